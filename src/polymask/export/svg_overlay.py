"""
SVG export of mask polygons for polymask.

Draws normalized polygons over a canvas of the base image's size so that
selections and detections can be inspected in any SVG viewer.
"""

import svgwrite

from polymask.geometry.smooth import polygon_svg_path
from polymask.tracer import get_tracer, trace


@trace(label="emit_polygons_svg")
def emit_polygons_svg(polygons, width, height, colors=None, ids=None, smoothing=0.0,
                      stroke_width=1.5, fill_opacity=0.25):
    """
    Create an SVG document with one closed path per polygon.

    Args:
        polygons: list of normalized polygons
        width, height: canvas size in pixels
        colors: optional per-polygon colours (default "#3b82f6")
        ids: optional per-polygon element ids
        smoothing: Catmull-Rom smoothing applied to every path
        stroke_width: outline width
        fill_opacity: opacity of the polygon fill

    Returns:
        svgwrite.Drawing object
    """
    tracer = get_tracer()

    dwg = svgwrite.Drawing(size=(f"{width}px", f"{height}px"))
    dwg.viewbox(0, 0, width, height)

    group = dwg.g(id="masks", stroke_width=stroke_width, fill_opacity=fill_opacity)

    emitted = 0
    for idx, polygon in enumerate(polygons):
        d = polygon_svg_path(polygon, smoothing=smoothing, width=width, height=height)
        if not d:
            continue

        color = colors[idx] if colors else "#3b82f6"
        attrs = {"d": d, "fill": color, "stroke": color}
        if ids:
            attrs["id"] = ids[idx]
        group.add(dwg.path(**attrs))
        emitted += 1

    dwg.add(group)

    tracer.event(f"SVG emitted with {emitted} of {len(polygons)} polygons")

    return dwg
