# Path: survey_blend/process/__init__.py
"""
survey_blend Process Layer

Subpackages:
    - matcher: Label similarity, mapping resolution and suggestions
    - normalizer: Wide-to-long row normalization
    - blending: Grouping and percentile blending
"""
