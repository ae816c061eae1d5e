"""Modelos, errores y convenciones del dominio.

Por qué:
- Aquí viven las estructuras de datos puras y estrictas (Pydantic v2):
  definiciones de integración, overrides y descriptores de recursos.
- El dominio no conoce HTTP ni la CLI: solo conceptos del problema.
"""
