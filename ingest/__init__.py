"""
Ingest pipeline per carte vini in testo libero.

Questo modulo contiene:
- types: WineRecord e chiave di deduplicazione (cache_key)
- extractor: Estrazione strutturata di una riga (OpenAI, fallback euristico)
- rate_limiter: Limite globale chiamate di estrazione
- store: Persistenza deduplicata (upsert su cache_key)
- scheduler: Elaborazione sequenziale a batch con progress
- service: IngestionService, punto di ingresso pubblico
"""
