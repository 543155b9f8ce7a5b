"""magic_kb.app

Application layer: the composition root (:mod:`magic_kb.app.container`) and
the FastAPI surface (:mod:`magic_kb.app.api`).
"""
