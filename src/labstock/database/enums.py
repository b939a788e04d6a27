import enum


class NomenclatureCategory(enum.StrEnum):
    MEDIUM = "medium"
    SERUM = "serum"
    BUFFER = "buffer"
    SUPPLEMENT = "supplement"
    ENZYME = "enzyme"
    REAGENT = "reagent"
    CONSUMABLE = "consumable"
    EQUIPMENT = "equipment"


class BatchStatus(enum.StrEnum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    EXPIRED = "expired"
    DEPLETED = "depleted"


class MovementType(enum.StrEnum):
    RECEIVE = "receive"
    CONSUME = "consume"
    ADJUST = "adjust"


class DisposeReason(enum.StrEnum):
    EXPIRED = "expired"
    CONTAMINATION = "contamination"
    LOW_QUALITY = "low_quality"
    PROTOCOL_COMPLETE = "protocol_complete"
    DAMAGED = "damaged"
    OTHER = "other"
