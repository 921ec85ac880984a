"""
Client-side Compositing

Whitespace trimming and grid layout of garment images, backed by
Pillow and numpy.
"""
