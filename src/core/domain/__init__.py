"""Dominio de plancraft: selección, precio, pasos y estado del workflow.

Por qué:
- `models` (Pydantic v2) describe lo que se persiste o viaja al backend.
- `steps` (dataclasses) describe la configuración estática de los pasos.
- `errors` separa fallos de programación, de servicio y de usuario.
- Nada aquí conoce HTTP ni la CLI.
"""
