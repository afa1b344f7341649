#!/usr/bin/env python3
"""Debug overviews of per-tile ownership / weight masks on the canvas."""

import argparse
from pathlib import Path
from typing import Sequence, Tuple

import cv2
import numpy as np
import matplotlib.pyplot as plt
from PIL import Image

MAX_OVERVIEW_SIZE = 2048


def _overview_scale(canvas_size: Tuple[int, int], max_size: int = MAX_OVERVIEW_SIZE) -> float:
    return min(1.0, max_size / float(max(canvas_size)))


def render_ownership_overview(tiles: Sequence, masks: Sequence[np.ndarray], canvas_size: Tuple[int, int],
                              max_size: int = MAX_OVERVIEW_SIZE) -> np.ndarray:
    """
    Colour every tile's mask with its own hue and sum them on a downscaled canvas.

    Pixels where masks overlap appear as mixed colours, which makes ramps
    around frontiers and double-owned areas easy to spot.

    Returns:
        RGB uint8 overview image
    """
    scale = _overview_scale(canvas_size, max_size)
    width = max(1, int(round(canvas_size[0] * scale)))
    height = max(1, int(round(canvas_size[1] * scale)))
    overview = np.zeros((height, width, 3), dtype=np.float32)

    colors = plt.get_cmap('tab20')
    for index, (tile, mask) in enumerate(zip(tiles, masks)):
        if mask is None:
            continue
        x0 = int(round(tile.x * scale))
        y0 = int(round(tile.y * scale))
        w = max(1, int(round(mask.shape[1] * scale)))
        h = max(1, int(round(mask.shape[0] * scale)))
        x1, y1 = min(x0 + w, width), min(y0 + h, height)
        if x1 <= max(x0, 0) or y1 <= max(y0, 0):
            continue

        small = cv2.resize(mask, (w, h), interpolation=cv2.INTER_AREA).astype(np.float32) / 255.0
        small = small[max(0, -y0):y1 - y0, max(0, -x0):x1 - x0]
        color = np.array(colors(index % 20)[:3], dtype=np.float32)
        overview[max(y0, 0):y1, max(x0, 0):x1] += small[..., np.newaxis] * color

    return (np.clip(overview, 0.0, 1.0) * 255).astype(np.uint8)


def save_ownership_overview(tiles: Sequence, masks: Sequence[np.ndarray], canvas_size: Tuple[int, int],
                            output_path: Path, title: str = 'Ownership'):
    """Write the ownership overview as a PNG with tile outlines and labels."""
    overview = render_ownership_overview(tiles, masks, canvas_size)
    scale = _overview_scale(canvas_size)

    fig, ax = plt.subplots(figsize=(12, 12 * overview.shape[0] / max(overview.shape[1], 1)))
    ax.imshow(overview)
    for index, tile in enumerate(tiles):
        rect = plt.Rectangle((tile.x * scale, tile.y * scale), tile.width * scale, tile.height * scale,
                             fill=False, edgecolor='white', linewidth=0.5)
        ax.add_patch(rect)
        ax.text((tile.x + tile.width / 2) * scale, (tile.y + tile.height / 2) * scale, str(index),
                color='white', fontsize=8, ha='center', va='center')
    ax.set_title(title)
    ax.axis('off')

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=100, bbox_inches='tight')
    plt.close(fig)
    return output_path


def regenerate_overview(input_dir: Path, intermediate_dir: Path, output_path: Path,
                        suffix: str = '_blend_mask.png') -> Path:
    """Rebuild an overview from the masks saved in a run's intermediate/ directory."""
    from tile_loader import OrthoTileLoader

    loader = OrthoTileLoader()
    tiles = loader.load_from_directory(input_dir)

    masks = []
    for tile in tiles:
        mask_path = Path(intermediate_dir) / f'{Path(tile.name).stem}{suffix}'
        if mask_path.exists():
            masks.append(np.array(Image.open(mask_path).convert('L')))
        else:
            print(f"  Warning: missing mask {mask_path.name}")
            masks.append(None)

    return save_ownership_overview(tiles, masks, loader.canvas_size, output_path,
                                   title=suffix.strip('_').replace('.png', ''))


def main():
    parser = argparse.ArgumentParser(description='Regenerate mask overviews from a blending run')
    parser.add_argument('input_dir', type=str, help='Tile directory used for the run')
    parser.add_argument('run_dir', type=str, help='Run output directory (contains intermediate/)')
    args = parser.parse_args()

    run_dir = Path(args.run_dir)
    for suffix in ('_blend_mask.png', '_weight_mask.png'):
        output_path = run_dir / 'visualizations' / f"{suffix.strip('_').replace('.png', '')}_overview.png"
        regenerate_overview(Path(args.input_dir), run_dir / 'intermediate', output_path, suffix)
        print(f"✓ Saved {output_path}")


if __name__ == '__main__':
    main()
