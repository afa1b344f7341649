"""
Default values for the orthomosaic blending pipeline.

These defaults are used by the command line, config files and the programmatic
API (MosaicConfig). They can be overridden by user input.
"""

# Requested number of multi-band levels (capped by canvas size at prepare time)
DEFAULT_NUM_BANDS = 14

# Weight representation: 'float32' or 'fixed16'
DEFAULT_WEIGHT_TYPE = 'float32'

# Half-width of the ramp around Voronoi frontiers for blend masks (pixels)
DEFAULT_OVERLAP_MARGIN = 20.0

# Half-width of the ramp around Voronoi frontiers for weight masks (pixels)
DEFAULT_WEIGHT_MARGIN = 128.0

# Feather radius for coverage masks (pixels)
DEFAULT_FEATHER_RADIUS = 512.0

# Debug level: 'none', 'intermediate' or 'high'
DEFAULT_DEBUG_LEVEL = 'none'

# Default output directory for logs and intermediate files
DEFAULT_OUTPUT_DIR = 'outputs'
