#!/usr/bin/env python3
"""
Main entry point for orthomosaic tile blending.
Supports command-line execution and configuration file input.
"""

import argparse
import json
import sys
from pathlib import Path
import logging
from datetime import datetime

from defaults import (
    DEFAULT_NUM_BANDS,
    DEFAULT_WEIGHT_TYPE,
    DEFAULT_OVERLAP_MARGIN,
    DEFAULT_WEIGHT_MARGIN,
    DEFAULT_FEATHER_RADIUS,
    DEFAULT_DEBUG_LEVEL,
    DEFAULT_OUTPUT_DIR,
)
from mosaic import MosaicConfig, OrthoMosaicBuilder
from utils import setup_logging, create_output_directory, log_banner


def load_config(config_path: str) -> dict:
    """Read a JSON config file; the top level must be an object."""
    with open(config_path, 'r') as f:
        config = json.load(f)
    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")
    return config


def save_config(config: dict, output_dir: Path) -> Path:
    """Write the effective configuration as run_config.json."""
    config_path = output_dir / 'run_config.json'
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2, sort_keys=True)
    logging.info(f"Configuration saved to: {config_path}")
    return config_path


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Blend georeferenced orthophoto tiles into a seamless orthomosaic'
    )

    parser.add_argument('input_dir', nargs='?', help='Folder containing TIFF tiles and TFW files')
    parser.add_argument('output', nargs='?', help='Output image path (.tif for GeoTIFF, .jpg/.png otherwise)')
    parser.add_argument('num_bands', nargs='?', type=int,
                        help=f'Number of bands for the multi-band blender (default: {DEFAULT_NUM_BANDS})')

    parser.add_argument('--config', type=str, help='Path to configuration JSON file')
    parser.add_argument('--weight-type', type=str, choices=['float32', 'fixed16'],
                        help='Weight representation (overrides config)')
    parser.add_argument('--overlap-margin', type=float,
                        help='Blend mask ramp half-width around seams, in pixels (overrides config)')
    parser.add_argument('--weight-margin', type=float,
                        help='Weight mask ramp half-width around seams, in pixels (overrides config)')
    parser.add_argument('--feather-radius', type=float,
                        help='Coverage feather radius in pixels (overrides config)')
    parser.add_argument('--sharp', action='store_true', help='Do not feather coverage masks')
    parser.add_argument('--output-dir', type=str, help='Directory for logs and intermediate files')
    parser.add_argument('--debug-level', type=str, choices=['none', 'intermediate', 'high'],
                        help='Save intermediate masks and overviews (overrides config)')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    return parser


def main(argv=None):
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if args.config:
        try:
            config_dict = load_config(args.config)
        except (OSError, ValueError) as e:
            print(f"Error: cannot read config file: {e}")
            return 1
    else:
        config_dict = {
            'input_dir': '',
            'output_path': '',
            'output_dir': DEFAULT_OUTPUT_DIR,
            'num_bands': DEFAULT_NUM_BANDS,
            'weight_type': DEFAULT_WEIGHT_TYPE,
            'overlap_margin': DEFAULT_OVERLAP_MARGIN,
            'weight_margin': DEFAULT_WEIGHT_MARGIN,
            'feather_radius': DEFAULT_FEATHER_RADIUS,
            'sharp_coverage': False,
            'debug_level': DEFAULT_DEBUG_LEVEL,
            'verbose': False,
        }

    # Override config with command-line arguments
    if args.input_dir:
        config_dict['input_dir'] = args.input_dir
    if args.output:
        config_dict['output_path'] = args.output
    if args.num_bands is not None:
        config_dict['num_bands'] = args.num_bands
    if args.weight_type:
        config_dict['weight_type'] = args.weight_type
    if args.overlap_margin is not None:
        config_dict['overlap_margin'] = args.overlap_margin
    if args.weight_margin is not None:
        config_dict['weight_margin'] = args.weight_margin
    if args.feather_radius is not None:
        config_dict['feather_radius'] = args.feather_radius
    if args.sharp:
        config_dict['sharp_coverage'] = True
    if args.output_dir:
        config_dict['output_dir'] = args.output_dir
    if args.debug_level:
        config_dict['debug_level'] = args.debug_level
    if args.verbose:
        config_dict['verbose'] = True

    if not config_dict.get('input_dir') or not config_dict.get('output_path'):
        print("Error: input_dir and output_path are required")
        print("Provide them as positional arguments or via --config file")
        return 1

    try:
        config = MosaicConfig.from_dict(config_dict)
        config.validate()
    except (TypeError, ValueError) as e:
        print(f"Error: invalid configuration: {e}")
        return 1

    output_dir = create_output_directory(config.output_dir)
    setup_logging(output_dir, verbose=config.verbose)

    log_banner("ORTHOMOSAIC BLENDING")
    logging.info(f"Timestamp: {datetime.now().isoformat()}")
    logging.info(f"Input: {config.input_dir}")
    logging.info(f"Output: {config.output_path}")
    logging.info(f"Bands: {config.num_bands} ({config.weight_type})")
    logging.info(f"Output directory: {output_dir}")
    logging.info("=" * 80)

    save_config(config.to_dict(), output_dir)

    try:
        builder = OrthoMosaicBuilder(config, output_dir)
        builder.run()
    except Exception as e:
        logging.error(f"Blending failed with error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
