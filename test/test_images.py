import io
import pathlib

import pytest
from lxml import etree
from PIL import Image

from sprat.images import CWebPStep, ImageOptimizeStep, PillowWebPStep, SVGOptimizeStep
from sprat.pipeline import run_pipeline
from sprat.presets import IMAGE_EXTENSIONS, images_task, imgmin_task, sprites_task, webp_task
from sprat.sprites import SVGSpriteStep, sprite_id
from sprat.test_harness import make_context, snapshot_tree


SVG = '{http://www.w3.org/2000/svg}'
XLINK = '{http://www.w3.org/1999/xlink}'


def gradient(size=(64, 48)):
    img = Image.new('RGB', size)
    img.putdata([
        (x * 4 % 256, y * 5 % 256, (x + y) * 2 % 256)
        for y in range(size[1])
        for x in range(size[0])
    ])
    return img


def encode(img: Image.Image, fmt: str, **params):
    buf = io.BytesIO()
    img.save(buf, fmt, **params)
    return buf.getvalue()


IMAGE_SAMPLES = {
    'jpg': lambda: encode(gradient(), 'JPEG'),
    'jpeg': lambda: encode(gradient(), 'JPEG', quality=60),
    'png': lambda: encode(gradient(), 'PNG'),
    'webp': lambda: encode(gradient(), 'WEBP'),
    'svg': lambda: b'<svg xmlns="http://www.w3.org/2000/svg">\n  <!-- kept -->\n  <g id="a"/>\n</svg>\n',
}


@pytest.mark.parametrize('ext', IMAGE_EXTENSIONS)
def test_images_copied_byte_for_byte(tmp_path: pathlib.Path, ext: str):
    files = {
        f'img/logo.{ext}': IMAGE_SAMPLES[ext](),
        f'img/photos/beach.{ext}': IMAGE_SAMPLES[ext](),
        'img/notes.txt': 'not an image',
        f'fonts/a.{ext}': IMAGE_SAMPLES[ext](),
    }
    context = make_context(tmp_path, files)
    assert run_pipeline(images_task(), context).ok

    tree = snapshot_tree(context['output_dir'])
    assert set(tree) == {f'img/logo.{ext}', f'img/photos/beach.{ext}'}
    for name, data in tree.items():
        assert data == files[name]


def test_webp_task_converts_jpegs(tmp_path: pathlib.Path):
    context = make_context(tmp_path, {
        'img/photo.jpg': encode(gradient(), 'JPEG', quality=95),
        'img/logo.png': encode(gradient(), 'PNG'),
    })
    task = webp_task()
    assert run_pipeline(task, context).ok
    assert task.reload is None

    assert snapshot_tree(context['output_dir']).keys() == {'img/photo.webp'}
    with Image.open(context['output_dir'] / 'img' / 'photo.webp') as img:
        assert img.format == 'WEBP'
        assert img.size == (64, 48)


def test_pillow_webp_copies_to_extra_outputs(tmp_path: pathlib.Path):
    source = tmp_path / 'photo.jpg'
    source.write_bytes(encode(gradient(), 'JPEG'))
    outputs = [tmp_path / 'a' / 'photo.webp', tmp_path / 'b' / 'photo.webp']
    PillowWebPStep(quality=60, method=4)(source, outputs)
    assert outputs[0].read_bytes() == outputs[1].read_bytes()


@pytest.mark.parametrize('kw,expected', [
    ({}, ['-q', '75']),
    ({'quality': 90, 'method': 6}, ['-q', '90', '-m', '6']),
    ({'preset': 'photo', 'lossless': True}, ['-preset', 'photo', '-q', '75', '-lossless']),
    ({'options': ['-mt']}, ['-q', '75', '-mt']),
])
def test_cwebp_command(kw: dict, expected: list[str]):
    step = CWebPStep(**kw)
    src, out = pathlib.Path('in.jpg'), pathlib.Path('out.webp')
    assert step.get_command(src, out) == ['cwebp', *expected, src, '-o', out]


def test_optimize_jpeg_is_smaller(tmp_path: pathlib.Path):
    path = tmp_path / 'photo.jpg'
    original = encode(gradient((128, 96)), 'JPEG', quality=98)
    path.write_bytes(original)

    ImageOptimizeStep()(path, [path])

    optimized = path.read_bytes()
    assert len(optimized) < len(original)
    with Image.open(path) as img:
        assert img.format == 'JPEG'
        assert img.size == (128, 96)


def test_optimize_png_is_lossless(tmp_path: pathlib.Path):
    source = gradient()
    path = tmp_path / 'logo.png'
    original = encode(source, 'PNG', compress_level=0)
    path.write_bytes(original)

    ImageOptimizeStep()(path, [path])

    assert len(path.read_bytes()) < len(original)
    with Image.open(path) as img:
        assert img.tobytes() == source.tobytes()


def test_optimize_keeps_original_when_not_smaller(tmp_path: pathlib.Path):
    path = tmp_path / 'logo.png'
    original = encode(gradient(), 'PNG', optimize=True)
    path.write_bytes(original)
    out = tmp_path / 'out' / 'logo.png'

    ImageOptimizeStep()(path, [path, out])

    assert path.read_bytes() == original
    assert out.read_bytes() == original


def test_optimize_rejects_bad_quality_band():
    with pytest.raises(ValueError):
        ImageOptimizeStep(min_quality=90, max_quality=80)


def test_imgmin_task_works_in_place(tmp_path: pathlib.Path):
    context = make_context(tmp_path)
    out = context['output_dir']
    (out / 'img').mkdir()
    (out / 'img' / 'big.png').write_bytes(encode(gradient(), 'PNG', compress_level=0))
    (out / 'img' / 'icon.svg').write_text(
        '<svg xmlns="http://www.w3.org/2000/svg"><!-- drawn by hand --><rect width="1"/></svg>'
    )
    before = snapshot_tree(out)

    assert run_pipeline(imgmin_task(), context).ok

    after = snapshot_tree(out)
    assert after.keys() == before.keys()
    assert len(after['img/big.png']) < len(before['img/big.png'])
    assert b'drawn by hand' not in after['img/icon.svg']


def test_svg_optimize(tmp_path: pathlib.Path):
    path = tmp_path / 'drawing.svg'
    path.write_text('''<?xml version="1.0"?>
<!-- Created with Inkscape -->
<svg xmlns="http://www.w3.org/2000/svg"
     xmlns:inkscape="http://www.inkscape.org/namespaces/inkscape"
     xmlns:sodipodi="http://sodipodi.sourceforge.net/DTD/sodipodi-0.dtd"
     viewBox="0 0 10 10" inkscape:version="1.2">
  <metadata><title>junk</title></metadata>
  <sodipodi:namedview id="view"/>
  <g inkscape:label="Layer 1">
    <rect width="10" height="10" fill="red"/>
  </g>
</svg>
''')
    out = tmp_path / 'out.svg'
    SVGOptimizeStep()(path, [out])

    data = out.read_text()
    for junk in ('inkscape', 'sodipodi', 'metadata', '<!--'):
        assert junk not in data
    root = etree.fromstring(out.read_bytes())
    assert root.get('viewBox') == '0 0 10 10'
    assert root.find(f'{SVG}g/{SVG}rect').get('fill') == 'red'


@pytest.mark.parametrize('name,expected', [
    ('logo.svg', 'logo'),
    ('arrow left.svg', 'arrow-left'),
    ('icon_1.svg', 'icon_1'),
    ('!!!.svg', 'sprite'),
])
def test_sprite_id(name: str, expected: str):
    assert sprite_id(pathlib.Path(name)) == expected


SPRITE_SOURCES = {
    'img/svg/logo.svg': '''<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 20 10" class="big">
  <defs><linearGradient id="g"><stop offset="0"/></linearGradient></defs>
  <rect width="20" height="10" fill="url(#g)"/>
</svg>''',
    'img/svg/icon.svg': '''<svg xmlns="http://www.w3.org/2000/svg"
     xmlns:xlink="http://www.w3.org/1999/xlink" width="16px" height="16">
  <path id="p" d="M0 0h16v16z"/>
  <use xlink:href="#p"/>
</svg>''',
    'img/svg/nested/skip.svg': '<svg xmlns="http://www.w3.org/2000/svg"/>',
}


def test_sprites_task_stacks_sources(tmp_path: pathlib.Path):
    context = make_context(tmp_path, SPRITE_SOURCES)
    assert run_pipeline(sprites_task(), context).ok

    assert snapshot_tree(context['output_dir']).keys() == {'img/sprites.svg'}
    root = etree.parse(str(context['output_dir'] / 'img' / 'sprites.svg')).getroot()
    assert root.tag == f'{SVG}svg'

    style, *members = root
    assert style.tag == f'{SVG}style'
    assert [m.get('id') for m in members] == ['icon', 'logo']

    icon, logo = members
    assert icon.get('viewBox') == '0 0 16 16'
    assert icon.find(f'{SVG}path').get('id') == 'icon_p'
    assert icon.find(f'{SVG}use').get(f'{XLINK}href') == '#icon_p'

    assert logo.get('viewBox') == '0 0 20 10'
    assert logo.get('class') is None
    assert logo.find(f'{SVG}defs/{SVG}linearGradient').get('id') == 'logo_g'
    assert logo.find(f'{SVG}rect').get('fill') == 'url(#logo_g)'


def test_sprite_ids_can_stay_unprefixed(tmp_path: pathlib.Path):
    context = make_context(tmp_path, SPRITE_SOURCES)
    svg_dir = context['source_dir'] / 'img' / 'svg'
    data = SVGSpriteStep(namespace_ids=False).assemble([svg_dir / 'icon.svg'])
    root = etree.fromstring(data)
    assert root[1].find(f'{SVG}path').get('id') == 'p'


def test_sprite_duplicate_ids(tmp_path: pathlib.Path):
    context = make_context(tmp_path, {
        'a b.svg': '<svg xmlns="http://www.w3.org/2000/svg"/>',
        'a-b.svg': '<svg xmlns="http://www.w3.org/2000/svg"/>',
    })
    source = context['source_dir']
    with pytest.raises(ValueError, match='a-b'):
        SVGSpriteStep()([source / 'a b.svg', source / 'a-b.svg'], [context['output_dir'] / 'sprites.svg'])
