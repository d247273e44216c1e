"""
Tassonomia errori per winelist-processor.

Ogni errore porta con sé lo status HTTP e un codice stabile da esporre ai client.
"""
from typing import Any, Dict


class ProcessorError(Exception):
    """Errore base del processor."""

    status_code: int = 500
    code: str = "processor_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Payload JSON per risposte di errore."""
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
        }


class ValidationError(ProcessorError):
    """Input assente o troppo corto."""
    status_code = 400
    code = "validation_error"


class NotFoundError(ProcessorError):
    """Handle o id sconosciuto (o risultato non ancora disponibile)."""
    status_code = 404
    code = "not_found"


class ConflictError(ProcessorError):
    """Operazione non valida nello stato corrente dell'elaborazione."""
    status_code = 409
    code = "conflict"


class ExtractionFailure(ProcessorError):
    """Estrazione di una singola riga fallita o riga non riconosciuta come vino."""
    status_code = 422
    code = "extraction_failed"


class PersistenceFailure(ProcessorError):
    """Lettura/scrittura sullo store fallita."""
    status_code = 500
    code = "persistence_failed"

    def __init__(self, message: str, unreachable: bool = False):
        super().__init__(message)
        # True se il database stesso non è raggiungibile: l'elaborazione va interrotta
        self.unreachable = unreachable


class ServiceUnavailable(ProcessorError):
    """Servizio di estrazione non configurato o che rifiuta le credenziali."""
    status_code = 503
    code = "service_unavailable"
