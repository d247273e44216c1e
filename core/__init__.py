"""
Core functionality per winelist-processor.

Questo modulo contiene:
- Configurazione (config.py)
- Database (database.py)
- Errori (errors.py)
- Logging (logger.py)
- Registro progress elaborazioni (progress.py)
"""
