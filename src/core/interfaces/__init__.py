"""Interfaces/abstracciones del Core.

Por qué:
- Define contratos (Protocol) que implementan adaptadores concretos
  (p.ej. `ResourceLookup` para auth configs y conexiones).
- El motor de overrides depende de estas abstracciones, no del transporte HTTP.
"""
