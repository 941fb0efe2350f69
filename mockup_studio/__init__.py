"""
Mockup Studio - composite logo overlays onto product images and hand the
composite to Gemini for photorealistic rendering.

Core pieces:
  KeyPool             - multi-key rotation with a per-key circuit breaker
  ResilientInvoker    - retry-with-rotation wrapper around one Gemini call
  AIGateway           - mockup / asset / edit / analyze / command operations
  LayerEngine         - layer list, selection and undo/redo history
  GestureInterpreter  - drag / pinch / wheel -> layer geometry
  CompositeRasterizer - WYSIWYG capture of what the user actually saw
"""

__version__ = "1.0.0"
