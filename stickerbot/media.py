"""
Media conversion
────────────────
• convert(data, profile)               → lossless WebP bytes resized/padded per profile
• convert_to_asset(data, profile, ...)  → same, written as one staged file
• validate_animated(data, kind)        → TGS / WebM limits check
• transcode_video(data, ...)           → VP9 WebM re-encoded within sticker limits
• prepare_sticker(data, kind, ...)     → payload ready for a sticker set
"""

import asyncio
import enum
import io
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from fractions import Fraction
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from stickerbot.assets import AssetStore
from stickerbot.config import config
from stickerbot.errors import ConversionError, InputError
from stickerbot.interfaces import StickerItem
from stickerbot.models import StickerType

logger = logging.getLogger(__name__)

MAX_SOURCE_SIZE = 50 * 1024 * 1024
TGS_SIZE_LIMIT = 64 * 1024
VIDEO_SIZE_LIMIT = 256 * 1024
VIDEO_MAX_DURATION = 3.0
VIDEO_MAX_FPS = 30
VIDEO_MAX_SIDE = 512
VIDEO_CODEC = 'vp9'
GZIP_MAGIC = b'\x1f\x8b'

CONVERT_EXECUTOR = ThreadPoolExecutor(max_workers=2)


class Fit(str, enum.Enum):
    FILL = 'fill'  # stretch to the exact box
    COVER = 'cover'  # scale and crop to fill the box
    INSIDE = 'inside'  # scale down to fit, never crop


class PaddingEdge(str, enum.Enum):
    TOP = 'top'
    BOTTOM = 'bottom'


@dataclass(frozen=True)
class Profile:
    name: str
    width: int
    height: int
    padding: int = 0
    padding_edge: PaddingEdge = PaddingEdge.BOTTOM
    fit: Fit = Fit.FILL
    # box follows the source aspect ratio instead of being exactly width x height
    keep_aspect: bool = False
    force_resize: bool = False
    format: str = 'WEBP'
    extension: str = 'webp'

    def with_force_resize(self) -> 'Profile':
        return replace(self, force_resize=True)


ICON = Profile('icon', 100, 100, fit=Fit.COVER, force_resize=True)
STICKER = Profile('sticker', 512, 512, padding=50, fit=Fit.FILL, keep_aspect=True)


class AnimatedKind(str, enum.Enum):
    TGS = 'tgs'
    VIDEO = 'video'


@dataclass
class VideoInfo:
    width: int
    height: int
    codec: str
    duration: float
    fps: float
    size: int


def target_size(width: int, height: int, profile: Profile) -> tuple[int, int]:
    if not profile.keep_aspect:
        return profile.width, profile.height
    max_height = profile.height - profile.padding
    ratio = width / height
    if width >= height:
        tw = profile.width
        th = round(profile.width / ratio)
    else:
        th = max_height
        tw = round(th * ratio)
    if th > max_height:
        th = max_height
        tw = round(th * ratio)
    return max(1, min(tw, profile.width)), max(1, th)


def check_source_size(size: int):
    if size > MAX_SOURCE_SIZE:
        raise InputError(
            f'file too large ({size} bytes, max {MAX_SOURCE_SIZE} bytes)', code='size'
        )


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ConversionError('corrupt or unsupported image', code=type(e).__name__)
    if not img.width or not img.height:
        raise ConversionError('corrupt or unsupported image', code='no_size')
    return img


def _resize(img: Image.Image, size: tuple[int, int], fit: Fit) -> Image.Image:
    if fit is Fit.COVER:
        return ImageOps.fit(img, size, Image.LANCZOS, centering=(0.5, 0.5))
    if fit is Fit.INSIDE:
        return ImageOps.contain(img, size, Image.LANCZOS)
    return img.resize(size, Image.LANCZOS)


def _pad(img: Image.Image, padding: int, edge: PaddingEdge) -> Image.Image:
    canvas = Image.new('RGBA', (img.width, img.height + padding), (0, 0, 0, 0))
    canvas.paste(img, (0, padding if edge is PaddingEdge.TOP else 0))
    return canvas


def convert(data: bytes, profile: Profile) -> bytes:
    check_source_size(len(data))
    img = open_image(data).convert('RGBA')
    target = target_size(img.width, img.height, profile)
    if profile.force_resize or img.size != target:
        img = _resize(img, target, profile.fit)
    if profile.padding:
        img = _pad(img, profile.padding, profile.padding_edge)
    out = io.BytesIO()
    img.save(out, format=profile.format, lossless=True)
    return out.getvalue()


async def convert_async(data: bytes, profile: Profile) -> bytes:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(CONVERT_EXECUTOR, convert, data, profile)


async def convert_to_asset(
    data: bytes, profile: Profile, store: AssetStore, owner_id: int
) -> Path:
    result = await convert_async(data, profile)
    return store.stage(result, profile.name, owner_id, profile.extension)


# ── animated / video ─────────────────────────────────────────────────────────

def validate_tgs(data: bytes):
    if len(data) > TGS_SIZE_LIMIT:
        raise ConversionError(
            f'file too large ({len(data)} bytes, max {TGS_SIZE_LIMIT} bytes)', code='size'
        )
    if data[:2] != GZIP_MAGIC:
        raise ConversionError('not a TGS file: missing gzip header', code='magic')


def parse_frame_rate(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        rate = Fraction(value)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return float(rate)


def check_video(probe: dict, size: int) -> VideoInfo:
    """Check ffprobe output (-of json) against video sticker limits"""
    streams = [s for s in probe.get('streams', []) if s.get('codec_type', 'video') == 'video']
    if len(streams) != 1:
        raise ConversionError(
            f'expected exactly one video stream, found {len(streams)}', code='streams'
        )
    stream = streams[0]
    duration = stream.get('duration') or probe.get('format', {}).get('duration') or 0
    info = VideoInfo(
        width=int(stream.get('width') or 0),
        height=int(stream.get('height') or 0),
        codec=stream.get('codec_name') or '',
        duration=float(duration),
        fps=parse_frame_rate(stream.get('r_frame_rate') or stream.get('avg_frame_rate')),
        size=size,
    )
    checks = [
        (info.codec == VIDEO_CODEC, 'codec', 'codec must be VP9'),
        (
            info.size <= VIDEO_SIZE_LIMIT,
            'size',
            f'file too large ({info.size} bytes, max {VIDEO_SIZE_LIMIT} bytes)',
        ),
        (
            info.duration <= VIDEO_MAX_DURATION,
            'duration',
            f'duration too long ({info.duration:g}s, max {VIDEO_MAX_DURATION:g}s)',
        ),
        (
            info.fps <= VIDEO_MAX_FPS,
            'fps',
            f'frame rate too high ({info.fps:g}fps, max {VIDEO_MAX_FPS}fps)',
        ),
        (
            info.width <= VIDEO_MAX_SIDE and info.height <= VIDEO_MAX_SIDE,
            'dimensions',
            f'dimensions too large ({info.width}x{info.height}, max {VIDEO_MAX_SIDE}x{VIDEO_MAX_SIDE})',
        ),
    ]
    for ok, code, reason in checks:
        if not ok:
            raise ConversionError(reason, code=code)
    return info


async def _run(*cmd: str) -> bytes:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ConversionError(f'{Path(cmd[0]).name} is not installed', code='tool_missing')
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        logger.warning(
            '%s exited with %s: %s',
            cmd[0], proc.returncode, stderr.decode(errors='ignore')[:500],
        )
        raise ConversionError(
            f'{Path(cmd[0]).name} failed to process the video', code='tool_failed'
        )
    return stdout


async def probe_video(path: Path) -> dict:
    out = await _run(
        config.ffprobe_path,
        '-v', 'error',
        '-show_entries',
        'stream=codec_type,codec_name,width,height,duration,r_frame_rate:format=duration',
        '-of', 'json',
        str(path),
    )
    try:
        return json.loads(out)
    except ValueError:
        raise ConversionError('could not analyse the video', code='probe_output')


async def validate_animated(
    data: bytes, kind: AnimatedKind, store: AssetStore | None = None, owner_id: int = 0
) -> VideoInfo | None:
    if kind is AnimatedKind.TGS:
        validate_tgs(data)
        return None
    if store is None:
        raise ValueError('video validation needs an AssetStore to probe from')
    with store.staged(data, 'validate', owner_id, 'webm') as path:
        probe = await probe_video(path)
    return check_video(probe, len(data))


async def transcode_video(data: bytes, store: AssetStore, owner_id: int) -> bytes:
    output = store.path_for('video', owner_id, 'webm')
    try:
        with store.staged(data, 'input', owner_id, 'webm') as source:
            await _run(
                config.ffmpeg_path,
                '-y',
                '-i', str(source),
                '-c:v', 'libvpx-vp9',
                '-crf', '30',
                '-b:v', '200k',
                '-vf', "scale='min(512,iw)':'min(512,ih)':force_original_aspect_ratio=decrease",
                '-an',
                '-t', '3',
                str(output),
            )
        result = output.read_bytes()
    except OSError:
        raise ConversionError('transcoded video is missing', code='tool_output')
    finally:
        store.delete(output)
    if len(result) > VIDEO_SIZE_LIMIT:
        raise ConversionError(
            f'file too large after re-encoding ({len(result)} bytes, max {VIDEO_SIZE_LIMIT} bytes)',
            code='size',
        )
    return result


async def prepare_sticker(
    data: bytes, kind: StickerType, store: AssetStore, owner_id: int
) -> StickerItem:
    if kind is StickerType.ANIMATED:
        await validate_animated(data, AnimatedKind.TGS)
        return StickerItem(StickerType.ANIMATED, data)
    if kind is StickerType.VIDEO:
        await validate_animated(data, AnimatedKind.VIDEO, store, owner_id)
        return StickerItem(StickerType.VIDEO, await transcode_video(data, store, owner_id))
    return StickerItem(
        StickerType.STATIC, await convert_async(data, STICKER.with_force_resize())
    )


__all__ = [
    'MAX_SOURCE_SIZE',
    'TGS_SIZE_LIMIT',
    'VIDEO_SIZE_LIMIT',
    'Fit',
    'PaddingEdge',
    'Profile',
    'ICON',
    'STICKER',
    'AnimatedKind',
    'VideoInfo',
    'target_size',
    'check_source_size',
    'convert',
    'convert_async',
    'convert_to_asset',
    'validate_tgs',
    'check_video',
    'validate_animated',
    'transcode_video',
    'prepare_sticker',
]
