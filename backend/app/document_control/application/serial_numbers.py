import logging
from datetime import timedelta
from typing import Mapping, Optional, Tuple

from app.document_control.application.ports import Clock, IdGenerator, SerialNumberRepository
from app.document_control.domain.errors import (
    InvalidRequest,
    NotFound,
    PermissionDenied,
    ReservationExpired,
    SequenceConflict,
)
from app.document_control.domain.models import (
    ParsedSerialNumber,
    SerialNumberConfig,
    SerialNumberLedgerEntry,
    SerialNumberReservation,
)
from app.document_control.domain.numbering import (
    DEFAULT_SERIAL_PREFIX,
    default_serial_configs,
    format_serial_number,
    format_transmittal_number,
    parse_serial_number,
    transmittal_counter_scope,
    validate_serial_number,
)

logger = logging.getLogger(__name__)

DEFAULT_RESERVATION_TTL = timedelta(minutes=5)


class SerialNumberService:
    """
    Issues category serial numbers and monthly transmittal numbers.

    Sequences come from an atomic counter in the store, never from
    "select max, add one". The ledger's unique constraint is the last line of
    defence: a collision there is retried with a fresh counter value.
    """

    def __init__(
        self,
        repository: SerialNumberRepository,
        id_generator: IdGenerator,
        clock: Clock,
        configs: Optional[Mapping[str, SerialNumberConfig]] = None,
        default_prefix: str = DEFAULT_SERIAL_PREFIX,
        reservation_ttl: timedelta = DEFAULT_RESERVATION_TTL,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._id_generator = id_generator
        self._clock = clock
        self._configs = dict(configs) if configs is not None else default_serial_configs(default_prefix)
        self._default_prefix = default_prefix
        self._reservation_ttl = reservation_ttl
        self._max_retries = max(1, max_retries)

    def config_for(self, category: str) -> SerialNumberConfig:
        config = self._configs.get(category)
        if config is None:
            raise InvalidRequest(f"Unknown document category '{category}'", category=category)
        return config

    async def issue(self, category: str, project_code: Optional[str] = None) -> str:
        config = self.config_for(category)

        for attempt in range(1, self._max_retries + 1):
            floor = await self._floor(config)
            number = await self._repository.increment_counter(category, floor)
            serial = format_serial_number(config, number, project_code)
            entry = SerialNumberLedgerEntry(
                id=self._id_generator(),
                category=category,
                serial_number=serial,
                sequence_number=number,
                project_code=project_code,
                issued_at=self._clock(),
            )
            try:
                await self._repository.add_ledger_entry(entry)
                await self._repository.commit()
            except SequenceConflict:
                await self._repository.rollback()
                if attempt == self._max_retries:
                    raise
                logger.warning(
                    f"Serial {serial} already on the ledger, retrying (attempt {attempt})"
                )
                continue

            logger.info(f"Issued serial number {serial}")
            return serial

        raise SequenceConflict("Could not issue a serial number", category=category)

    async def next_sequence_number(self, category: str) -> int:
        """Preview the next number without consuming it."""
        config = self.config_for(category)
        floor = await self._floor(config)
        last = await self._repository.peek_counter(category)
        if last is None:
            return floor
        return max(last + 1, floor)

    async def issue_transmittal_number(self, project_code: Optional[str] = None) -> str:
        prefix = project_code or self._default_prefix
        issued_on = self._clock()
        scope = transmittal_counter_scope(prefix, issued_on)
        sequence = await self._repository.increment_counter(scope, 1)
        await self._repository.commit()

        number = format_transmittal_number(prefix, issued_on, sequence)
        logger.info(f"Issued transmittal number {number}")
        return number

    async def reserve(self, category: str, holder_id: str) -> Tuple[str, str]:
        serial = await self.issue(category)
        now = self._clock()
        reservation = SerialNumberReservation(
            id=self._id_generator(),
            serial_number=serial,
            category=category,
            holder_id=holder_id,
            created_at=now,
            expires_at=now + self._reservation_ttl,
        )
        await self._repository.add_reservation(reservation)
        await self._repository.commit()
        logger.info(
            f"Reserved {serial} for {holder_id} until {reservation.expires_at.isoformat()}"
        )
        return serial, reservation.id

    async def get_reservation(self, reservation_id: str) -> SerialNumberReservation:
        reservation = await self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", reservation_id=reservation_id)
        return reservation

    async def consume_reservation(
        self, reservation_id: str, holder_id: str
    ) -> SerialNumberReservation:
        reservation = await self.get_reservation(reservation_id)
        if reservation.holder_id != holder_id:
            raise PermissionDenied(
                "Reservation belongs to another user", reservation_id=reservation_id
            )
        if reservation.consumed_at is not None:
            raise InvalidRequest(
                "Reservation was already consumed", reservation_id=reservation_id
            )

        now = self._clock()
        if reservation.is_expired(now):
            # the serial stays issued; the gap is permanent
            raise ReservationExpired(
                f"Reservation for {reservation.serial_number} expired",
                reservation_id=reservation_id,
                serial_number=reservation.serial_number,
            )

        if not await self._repository.mark_reservation_consumed(reservation_id, now):
            await self._repository.rollback()
            raise InvalidRequest(
                "Reservation was already consumed", reservation_id=reservation_id
            )
        await self._repository.commit()
        logger.info(f"Reservation {reservation_id} consumed ({reservation.serial_number})")
        return SerialNumberReservation(
            id=reservation.id,
            serial_number=reservation.serial_number,
            category=reservation.category,
            holder_id=reservation.holder_id,
            created_at=reservation.created_at,
            expires_at=reservation.expires_at,
            consumed_at=now,
        )

    def validate(self, serial: str, category: str) -> bool:
        config = self._configs.get(category)
        if config is None:
            return False
        return validate_serial_number(serial, config)

    @staticmethod
    def parse(serial: str) -> Optional[ParsedSerialNumber]:
        return parse_serial_number(serial)

    async def _floor(self, config: SerialNumberConfig) -> int:
        highest = await self._repository.max_sequence_number(config.category)
        if highest is None:
            return config.start_number
        return max(highest + 1, config.start_number)
