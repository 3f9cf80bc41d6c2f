"""
Steps for converting and optimizing raster and vector images.
"""
from __future__ import annotations

import io
import logging
import shutil
import typing as t
from pathlib import Path

from .core import Step
from .dependencies import PipDependency, WebExecDependency
from .simple import BaseCommandStep, BaseStandardStep

if t.TYPE_CHECKING:
    from _typeshed import StrOrBytesPath
    from PIL import Image


log = logging.getLogger(__name__)

# Largest mean per-channel pixel difference (0-255 scale) accepted for each
# recompression target.
JPEG_TARGETS = {
    'low': 4.0,
    'medium': 2.5,
    'high': 1.5,
    'veryhigh': 0.8,
}


class CWebPStep(BaseCommandStep):
    """
    A WebP image conversion/optimization Step using cwebp.
    """
    def __init__(self,
                 quality: int = 75,
                 lossless: bool = False,
                 preset: str | None = None,
                 method: int | None = None,
                 options: t.Iterable[str] = ()):
        """
        @quality controls the size of the output image, traded off with quality
        for lossy images and processing time for lossless images. @lossless can
        be used to avoid image degradation, at the cost of file size. @preset
        is one of cwebp's content presets (`photo`, `picture`, `drawing`...)
        and @method its 0-6 speed/size trade-off. See
        https://developers.google.com/speed/webp/docs/cwebp for further
        @options and explanations.
        """
        # -preset must come first; it resets the other encoding parameters.
        self.options = ['-preset', preset] if preset else []
        self.options.extend(['-q', str(quality)])
        if method is not None:
            self.options.extend(['-m', str(method)])
        if lossless:
            self.options.append('-lossless')
        self.options.extend(options)

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            WebExecDependency('cwebp', 'https://developers.google.com/speed/webp/download'),
        }

    def get_command(self, input_path: Path, output_path: Path) -> list[StrOrBytesPath]:
        return ['cwebp', *self.options, input_path, '-o', output_path]


class PillowWebPStep(Step):
    """
    A WebP conversion Step using Pillow. Pillow exposes no content presets, so
    only @quality, @method and @lossless carry over from cwebp's options.
    """
    def __init__(self, quality: int = 80, method: int = 6, lossless: bool = False):
        self.quality = quality
        self.method = method
        self.lossless = lossless

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image

        with Image.open(path) as img:
            output_paths[0].parent.mkdir(parents=True, exist_ok=True)
            img.save(
                output_paths[0],
                'WEBP',
                quality=self.quality,
                method=self.method,
                lossless=self.lossless,
            )

        for target_path in output_paths[1:]:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(output_paths[0], target_path)


def _mean_error(original: Image.Image, candidate: Image.Image) -> float:
    from PIL import ImageChops, ImageStat
    diff = ImageChops.difference(original, candidate)
    means = ImageStat.Stat(diff).mean
    return sum(means) / len(means)


class ImageOptimizeStep(Step):
    """
    Recompress images with Pillow, keeping a result only when it is smaller
    than the input.

    JPEGs are recompressed lossily: a binary search of @loops rounds over
    @min_quality..@max_quality looks for the lowest quality whose mean pixel
    error stays within the @target in `JPEG_TARGETS`. PNGs and GIFs are
    re-encoded losslessly with Pillow's optimizer.
    """
    def __init__(self,
                 min_quality: int = 70,
                 max_quality: int = 80,
                 loops: int = 4,
                 target: str = 'high'):
        if not 0 < min_quality <= max_quality <= 100:
            raise ValueError(f'Invalid JPEG quality band {min_quality}..{max_quality}')
        self.min_quality = min_quality
        self.max_quality = max_quality
        self.loops = loops
        self.max_error = JPEG_TARGETS[target]

    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency('Pillow', check_name='PIL'),
        }

    def _encode_jpeg(self, img: Image.Image, quality: int) -> bytes:
        buf = io.BytesIO()
        params: dict[str, t.Any] = {'quality': quality, 'optimize': True, 'progressive': True}
        if icc := img.info.get('icc_profile'):
            params['icc_profile'] = icc
        img.save(buf, 'JPEG', **params)
        return buf.getvalue()

    def recompress_jpeg(self, img: Image.Image) -> bytes:
        from PIL import Image

        if img.mode not in ('RGB', 'L', 'CMYK'):
            img = img.convert('RGB')
        reference = img.convert('RGB')

        best = None
        low, high = self.min_quality, self.max_quality
        for _ in range(self.loops):
            if low > high:
                break
            quality = (low + high) // 2
            data = self._encode_jpeg(img, quality)
            with Image.open(io.BytesIO(data)) as candidate:
                error = _mean_error(reference, candidate.convert('RGB'))
            if error <= self.max_error:
                best = data
                high = quality - 1
            else:
                low = quality + 1
        return best or self._encode_jpeg(img, self.max_quality)

    def recompress_lossless(self, img: Image.Image, fmt: str) -> bytes:
        buf = io.BytesIO()
        params: dict[str, t.Any] = {'optimize': True}
        if fmt == 'GIF' and getattr(img, 'n_frames', 1) > 1:
            params['save_all'] = True
        img.save(buf, fmt, **params)
        return buf.getvalue()

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image

        original = path.read_bytes()
        with Image.open(io.BytesIO(original)) as img:
            fmt = img.format
            if fmt == 'JPEG':
                data = self.recompress_jpeg(img)
            elif fmt in ('PNG', 'GIF'):
                data = self.recompress_lossless(img, fmt)
            else:
                data = original

        if len(data) >= len(original):
            data = original
        else:
            log.debug('%s: %d -> %d bytes', path.name, len(original), len(data))
        for target_path in output_paths:
            if target_path == path and data is original:
                continue
            target_path.parent.mkdir(parents=True, exist_ok=True)
            target_path.write_bytes(data)


SVG_NS = 'http://www.w3.org/2000/svg'
# Namespaces written by common editors that browsers ignore.
EDITOR_NAMESPACES = {
    'http://www.inkscape.org/namespaces/inkscape',
    'http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd',
    'http://ns.adobe.com/AdobeIllustrator/10.0/',
    'http://www.bohemiancoding.com/sketch/ns',
}


def _namespace(tag: str):
    return tag[1:].split('}', 1)[0] if tag.startswith('{') else None


class SVGOptimizeStep(BaseStandardStep):
    """
    A lossless SVG cleanup Step using lxml: drops comments, processing
    instructions, `<metadata>`, editor-specific elements and attributes, and
    whitespace between elements.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('lxml'),
        }

    def optimize(self, data: bytes) -> bytes:
        from lxml import etree

        parser = etree.XMLParser(remove_comments=True, remove_pis=True, remove_blank_text=True,
                                 resolve_entities=False)
        root = etree.fromstring(data, parser)
        for element in list(root.iter()):
            if not isinstance(element.tag, str):
                continue
            if (
                element.tag == f'{{{SVG_NS}}}metadata'
                or _namespace(element.tag) in EDITOR_NAMESPACES
            ):
                parent = element.getparent()
                if parent is not None:
                    parent.remove(element)
                continue
            for attr in list(element.attrib):
                if _namespace(attr) in EDITOR_NAMESPACES:
                    del element.attrib[attr]
        etree.cleanup_namespaces(root)
        return etree.tostring(root, encoding='utf-8')

    def __call__(self, path: Path, output_paths: list[Path]):
        data = self.optimize(path.read_bytes())
        with self.ensure_outputs(output_paths):
            output_paths[0].write_bytes(data)
