"""
fotopdf - Images to PDF, and image re-encoding for smaller PDFs.

Two independent transformations:
- Page composition: one image per page, scaled to fit and centered
- Re-encoding: embedded raster images re-saved at a lower JPEG quality
"""

__version__ = "1.0.0"
__author__ = "fotopdf"
