"""Photo cutout (segmentation model with a pixel-heuristic fallback) rendered along a spiral."""
