"""
Video handling for modgate.

- **frame_sampler.py**: Validates videos and samples evenly spaced frames
- **av_source.py**: PyAV-backed frame source encoding frames as JPEG
"""
