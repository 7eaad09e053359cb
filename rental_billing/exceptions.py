class RentalBillingError(Exception):
    """Base class for rental billing domain errors"""


class MissingIdentifierError(RentalBillingError):
    """A required identifier (company, device) was not supplied"""


class DeviceNotFoundError(RentalBillingError):
    def __init__(self, device_id: str):
        super().__init__(f"Device {device_id} not found")
        self.device_id = device_id


class EntryNotFoundError(RentalBillingError):
    def __init__(self, entry_id: str):
        super().__init__(f"Rental payment entry {entry_id} not found")
        self.entry_id = entry_id


class InvalidTransitionError(RentalBillingError):
    """Requested invoice type or payment status change is not allowed"""


class MeterReadingParseError(RentalBillingError, ValueError):
    """Encoded meter readings could not be parsed in strict mode"""


class AssetUploadError(RentalBillingError):
    """Meter-photo evidence could not be stored"""


class DeviceCatalogError(RentalBillingError):
    """Device catalog could not be reached or returned an unusable payload"""
