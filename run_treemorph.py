from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from PyQt6.QtWidgets import QApplication

from treemorph_app.morph_state import MorphState
from treemorph_app.preview_widget import MorphPreviewWidget
from treemorph_app.scene_config import SCENE_PARAMETERS, load_scene_config, validate_scene_config
from treemorph_app.text_sampler import load_custom_fonts

# Project root (where run_treemorph.py lives)
ROOT_DIR = Path(__file__).resolve().parent
FONTS_DIR = ROOT_DIR / "fonts"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Preview of the particle morph between a scattered cloud, a text "
            "silhouette and a tree. Keys 1 / 2 / 3 switch state."
        ),
    )
    parser.add_argument(
        "config",
        nargs="?",
        help="Optional JSON file overriding the default scene configuration.",
    )
    parser.add_argument("--text", help="Text formed by the particles (overrides the config).")
    parser.add_argument(
        "--state",
        default=MorphState.SCATTERED.value,
        choices=[s.value for s in MorphState],
        help="Initial state.",
    )
    parser.add_argument(
        "--fonts-dir",
        default=str(FONTS_DIR),
        help="Directory of .ttf / .otf files to register before sampling text.",
    )
    parser.add_argument(
        "--list-params",
        action="store_true",
        help="Print the configurable scene parameters and exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.list_params:
        for param in SCENE_PARAMETERS:
            print(param.describe())
        return

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_scene_config(Path(args.config) if args.config else None)
    except RuntimeError as exc:
        print(f"[treemorph] {exc}")
        sys.exit(1)
    if args.text:
        config["text"] = args.text
    try:
        validate_scene_config(config)
    except ValueError as exc:
        print(f"[treemorph] Invalid scene config: {exc}")
        sys.exit(1)

    app = QApplication(sys.argv[:1])

    # Load bundled fonts before sampling any text
    families = load_custom_fonts(Path(args.fonts_dir))
    if families:
        print(f"[treemorph] Loaded {len(families)} font families from {args.fonts_dir}")

    print("[treemorph] Building scene...")
    win = MorphPreviewWidget(config=config)
    win.set_state(MorphState.from_value(args.state))
    win.setWindowTitle("Tree Morph")
    win.resize(win.sizeHint())
    win.show()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
