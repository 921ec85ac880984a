"""
Outfit Generation Pipeline

Async pipeline around the remote generation service:
1. Pre-compositing - speculative grid built while the user selects items
2. Mannequin - conditional stage for selections above the model's item limit
3. Render - final outfit render, polled to a terminal status
"""
