"""
Tool Integration Layer.

Declares the tools offered to the model (registry), implements them
(image generation, weather lookup) and dispatches the model's function calls.
"""
