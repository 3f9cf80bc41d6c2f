"""
Internal utilities for console output, logging and notifications.
"""
import logging

import rich.console
import rich.logging
import rich.panel


_consoles = {
    'stdout': rich.console.Console(),
    'stderr': rich.console.Console(stderr=True),
}


def print_with_style(*args, sep=' ', end='\n', file: str = 'stdout', style=None):
    """
    print() replacement which supports rich console styles.
    """
    _consoles[file].print(*args, sep=sep, end=end, style=style)


def notify(title: str, message: str):
    """
    Show a prominent, non-fatal error notification on stderr.
    """
    _consoles['stderr'].print(
        rich.panel.Panel(message, title=title, title_align='left', border_style='red')
    )


def configure_logging(verbose: bool = False):
    """
    Route the `sprat` loggers through rich. Step-by-step file logs are only
    shown when @verbose is set.
    """
    handler = rich.logging.RichHandler(
        console=_consoles['stderr'],
        show_path=False,
        markup=False,
    )
    handler.setFormatter(logging.Formatter('%(message)s', datefmt='[%X]'))
    logger = logging.getLogger('sprat')
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger('sprat.core').setLevel(logging.INFO if verbose else logging.WARNING)
    logger.propagate = False
