"""
Integración bidireccional con el backend remoto del POS.

Este paquete contiene la parte de red del motor de sincronización:
- types: tipos puros (resultados de subida, cambios remotos, sondas)
- sync_config: configuración inmutable del motor (SyncConfig)
- table_mappings: mapa tabla local -> recurso REST remoto
- remote_client: cliente httpx con bearer token y errores tipados

Objetivos de diseño:
- Sin estado global: cada componente recibe un SyncConfig al construirse.
- Modo degradado: sin token, ninguna llamada sale a la red.
- El cliente no decide reintentos; solo clasifica errores.
"""
