from __future__ import annotations

import argparse
import logging
import re
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from photocut.config import models_dir
from photocut.contracts import Entitlements, ExportFormat, ExportPreset, MatteMethod, ProcessingOptions
from photocut.io import load_image_rgba, save_image
from photocut.model import default_handles
from photocut.pipeline import FrameProcessor

_PRESET_RE = re.compile(r"^(?P<name>[^:]+):(?P<w>\d+)x(?P<h>\d+)(?::(?P<fmt>jpeg|png|webp))?(?::(?P<q>\d+))?$")


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def _parse_preset(value: str) -> ExportPreset:
    m = _PRESET_RE.match(value)
    if m is None:
        raise argparse.ArgumentTypeError(f"Invalid export preset {value!r}; expected NAME:WxH[:jpeg|png|webp][:QUALITY]")
    return ExportPreset(
        name=m["name"],
        width=int(m["w"]),
        height=int(m["h"]),
        format=ExportFormat(m["fmt"] or "jpeg"),
        quality=int(m["q"] or 90),
    )


def _safe_folder_name(name: str) -> str:
    return re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", name).strip()


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Product photo cutout: background removal, square canvas, exports.")
    parser.add_argument("--input", required=True, type=str, help="Input directory containing images.")
    parser.add_argument("--output", required=True, type=str, help="Output directory.")
    parser.add_argument("--method", default=MatteMethod.SIMPLE.value, choices=[m.value for m in MatteMethod])
    parser.add_argument("--square-size", default=2000, type=int)
    parser.add_argument("--padding", default=0.08, type=float, help="Padding fraction (0..0.45).")
    parser.add_argument("--threshold", default=245, type=int, help="Near-white threshold (0..255).")
    parser.add_argument("--feather", default=10, type=int)
    parser.add_argument("--transparent", action="store_true", help="Keep a transparent master instead of white.")
    parser.add_argument("--pure-white", action="store_true", help="Force #FFFFFF outside the subject bounds.")
    parser.add_argument("--keep-shadow", action="store_true", help="Do not suppress ground shadows after AI.")
    parser.add_argument(
        "--export",
        action="append",
        default=[],
        type=_parse_preset,
        help="Export preset NAME:WxH[:jpeg|png|webp][:QUALITY]; repeatable.",
    )
    parser.add_argument("--models-dir", default=None, type=str, help="Directory with modnet.onnx / u2net.onnx.")
    parser.add_argument("--no-ai", action="store_true", help="Disallow AI methods (threshold fallback).")
    parser.add_argument("--watermark", action="store_true", help="Watermark exports (trial mode).")
    parser.add_argument("--log-level", default="WARNING", type=str)
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    input_dir = Path(args.input)
    output_dir = Path(args.output)
    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    options = ProcessingOptions(
        method=MatteMethod(args.method),
        square_size=args.square_size,
        padding_percent=args.padding,
        white_background=not args.transparent,
        white_threshold=args.threshold,
        feather=args.feather,
        suppress_ground_shadow=not args.keep_shadow,
        force_pure_white_background=args.pure_white,
        exports=args.export,
    )
    entitlements = Entitlements(ai_allowed=not args.no_ai, watermark_required=args.watermark)

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    handles = default_handles(Path(args.models_dir) if args.models_dir else models_dir())
    total0 = time.perf_counter()
    with FrameProcessor(handles) as processor:
        for img_path in tqdm(images, desc="Processing", unit="img"):
            rel = img_path.relative_to(input_dir)
            stem = rel.with_suffix("").as_posix().replace("/", "__")

            frame = processor.process(load_image_rgba(str(img_path)), options, entitlements)
            save_image(frame.master, str(output_dir / f"{stem}_master.png"))
            for export in frame.exports:
                preset = export.preset
                out = output_dir / "exports" / _safe_folder_name(preset.name) / (
                    f"{stem}_{preset.width}x{preset.height}{preset.format.extension}"
                )
                save_image(export.image, str(out), preset.format, preset.quality)

            # Simple per-image timing log (kept minimal and deterministic).
            t = frame.timings
            via = frame.outcome.method
            if frame.outcome.fallback_from:
                via = f"{via} (fallback from {frame.outcome.fallback_from})"
            print(
                f"{img_path.name}: total={t.total_s:.3f}s via={via} "
                f"(matte={t.matte_s:.3f}s compose={t.compose_s:.3f}s export={t.export_s:.3f}s)"
            )

    total1 = time.perf_counter()
    print(f"Done. {len(images)} images in {total1-total0:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
