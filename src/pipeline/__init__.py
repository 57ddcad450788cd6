"""
Video Captioning Pipeline Module

This module orchestrates the captioning pipeline that:
1. Ingests an uploaded video and stores the original
2. Splits it into fixed-length chunks
3. Transcribes one chunk at a time
4. Burns a captioned preview for user review
5. Renders the approved captions onto the full video
"""

__version__ = "1.0.0"
