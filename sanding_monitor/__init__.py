"""
Sanding monitor core package.

Design intent:
- Correlate capture records (videos, images, notes) with sanding passes and steps.
- Coordinate slow device-side video generation behind one shared polling loop.
- Keep the vendor SDK behind small async client interfaces.
"""
