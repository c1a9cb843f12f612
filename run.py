from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from spiral_cutout.config import CANVAS_HEIGHT, CANVAS_WIDTH, get_device_name, get_model_base, get_quantization_bytes
from spiral_cutout.contracts import ModelConfig, SpiralParameters
from spiral_cutout.model import Heuristic, load_segmenter
from spiral_cutout.pipeline import Session, generate_spiral, save_cutout, save_export, upload_file
from spiral_cutout.surface import Surface


def _iter_images(input_path: Path):
    if input_path.is_file():
        yield input_path
        return
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff", ".gif"}
    for p in sorted(input_path.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Cut out the main object of a photo and render it along a spiral.")
    parser.add_argument("--input", required=True, type=str, help="Image file or directory of images.")
    parser.add_argument("--output", required=True, type=str, help="Output directory (one subdir per image).")
    parser.add_argument(
        "--model",
        default=get_model_base(),
        type=str,
        help="mobilenetv3 (default), resnet50, resnet101, lraspp, mobilenetv2, hf:<repo>, a TorchScript path, or 'heuristic'.",
    )
    parser.add_argument("--quantization-bytes", default=get_quantization_bytes(), type=int, choices=(1, 2, 4))
    parser.add_argument("--device", default=get_device_name(), type=str, help="torch device; empty = auto.")
    parser.add_argument("--turns", default=None, type=float, help="Spiral turns.")
    parser.add_argument("--size", default=None, type=float, help="Object size in percent.")
    parser.add_argument("--count", default=None, type=int, help="Number of copies.")
    parser.add_argument("--canvas-width", default=CANVAS_WIDTH, type=int)
    parser.add_argument("--canvas-height", default=CANVAS_HEIGHT, type=int)
    parser.add_argument("--save-cutout", action="store_true", help="Also write the transparent cutout PNG.")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    input_path = Path(args.input)
    output_dir = Path(args.output)
    if not input_path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")

    overrides = {"turns": args.turns, "object_size": args.size, "object_count": args.count}
    params = SpiralParameters(**{k: v for k, v in overrides.items() if v is not None})

    segmenter = load_segmenter(
        ModelConfig(base=args.model, quantization_bytes=args.quantization_bytes, device=args.device)
    )
    if isinstance(segmenter, Heuristic):
        print(f"Using heuristic background removal ({segmenter.reason})")

    images = list(_iter_images(input_path))
    if not images:
        print(f"No images found under {input_path}")
        return 0

    session = Session(surface=Surface(args.canvas_width, args.canvas_height))
    stats = {"ready": 0, "rejected": 0, "failed": 0, "heuristic": 0}

    total0 = time.perf_counter()
    for img_path in tqdm(images, desc="Processing", unit="img"):
        outcome = upload_file(session, segmenter, str(img_path))
        if outcome.status != "ready":
            stats[outcome.status] = stats.get(outcome.status, 0) + 1
            print(f"{img_path.name}: {outcome.status} ({outcome.message})")
            continue

        stats["ready"] += 1
        if outcome.method == "heuristic":
            stats["heuristic"] += 1

        rel = img_path.relative_to(input_path) if input_path.is_dir() else Path(img_path.name)
        out_dir = output_dir / rel.with_suffix("")

        t0 = time.perf_counter()
        generate_spiral(session, params)
        out_path = save_export(session, str(out_dir))
        if args.save_cutout:
            save_cutout(session, str(out_dir))
        t1 = time.perf_counter()

        timings = outcome.timings
        print(
            f"{img_path.name}: method={outcome.method} total={timings['total_s'] + (t1 - t0):.3f}s "
            f"(dec={timings['decode_s']:.3f}s inf={timings['inference_s']:.3f}s "
            f"comp={timings['composite_s']:.3f}s spiral={t1 - t0:.3f}s) -> {out_path}"
        )

    total1 = time.perf_counter()
    print(
        f"Done. {stats['ready']}/{len(images)} images in {total1 - total0:.2f}s "
        f"(heuristic={stats['heuristic']} rejected={stats['rejected']} failed={stats['failed']})"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
