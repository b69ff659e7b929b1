class PasteError(Exception):
    """Base class for everything the paste store raises."""


class InvalidIdentifier(PasteError):
    def __init__(self, paste_id: object):
        super().__init__(f"Invalid paste ID format: {paste_id!r}")
        self.paste_id = paste_id


class PasteNotFound(PasteError):
    def __init__(self, paste_id: str):
        super().__init__(f"Paste '{paste_id}' not found.")
        self.paste_id = paste_id


class GenerationExhausted(PasteError):
    def __init__(self, attempts: int):
        super().__init__(f"No free paste ID after {attempts} attempts")
        self.attempts = attempts


class StorageIOFailure(PasteError):
    pass


class StartupFailure(PasteError):
    pass
