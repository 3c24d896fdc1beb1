"""
schemas.py

Schemas Pydantic das mensagens trocadas via MQTT (versão 1) e
funções puras de conversão entre leitura bruta, mensagem e ponto.

Dois schemas compartilham o tópico `home/sensors`:

- SensorMeasurement: publicado pelo producer (sem `room`).
- MeasurementMessage: consumido pelo relay (com `room` obrigatório).
"""

import time
from typing import Optional

from influxdb_client import Point
from influxdb_client.domain.write_precision import WritePrecision
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from room_sensor_bridge.core.errors import DecodeError

MEASUREMENT_NAME = "room_measurement"


class RawReading(BaseModel):
    """
    Leitura bruta do sensor, em décimos de unidade.

    Ex.: temperature_tenths_celsius=212 → 21,2 °C
         humidity_tenths_percent=655   → 65,5 %
    """

    temperature_tenths_celsius: int
    humidity_tenths_percent: int


class SensorMeasurement(BaseModel):
    """
    Medição publicada pelo producer:

        {"temperature": 70.16, "humidity": 65.5}

    Temperatura em °F, umidade em %.
    """

    model_config = ConfigDict(strict=True)

    temperature: float
    humidity: float


class MeasurementMessage(BaseModel):
    """
    Medição consumida pelo relay:

        {"room": "kitchen", "temperature": 21.5, "humidity": 40.0}

    Validação estrita: tipos errados (ex.: "hot" como temperatura),
    chaves extras, objetos aninhados e NaN/Infinity são rejeitados.
    """

    model_config = ConfigDict(strict=True, frozen=True, extra="forbid", allow_inf_nan=False)

    room: str = Field(min_length=1)
    temperature: float
    humidity: float


class RoomPoint(BaseModel):
    """
    Ponto gravado no store de séries temporais.

    - tag:    room
    - campos: temperature, humidity
    - tempo:  instante de recebimento pelo relay, em ms desde epoch
    """

    model_config = ConfigDict(frozen=True)

    measurement: str = MEASUREMENT_NAME
    room: str
    temperature: float
    humidity: float
    timestamp_ms: int

    @property
    def tags(self) -> dict:
        return {"room": self.room}

    @property
    def fields(self) -> dict:
        return {"temperature": self.temperature, "humidity": self.humidity}

    def to_influx(self) -> Point:
        return (
            Point(self.measurement)
            .tag("room", self.room)
            .field("temperature", float(self.temperature))
            .field("humidity", float(self.humidity))
            .time(self.timestamp_ms, WritePrecision.MS)
        )


# --------------------------------------------------------------------
# Conversões
# --------------------------------------------------------------------


def to_measurement(raw: RawReading) -> SensorMeasurement:
    """
    Converte a leitura bruta do sensor para a mensagem publicada.

    - temperatura: décimos de °C → °F  (F = raw/10 * 1.8 + 32)
    - umidade:     décimos de %  → %   (H = raw/10)
    """
    return SensorMeasurement(
        temperature=raw.temperature_tenths_celsius / 10.0 * 1.8 + 32.0,
        humidity=raw.humidity_tenths_percent / 10.0,
    )


def decode_measurement(payload: bytes) -> MeasurementMessage:
    """
    Decodifica o payload MQTT (UTF-8 + JSON) em uma MeasurementMessage.

    Qualquer falha (bytes inválidos, JSON inválido, campo ausente ou
    tipo errado) vira DecodeError, restrita a esta mensagem.
    """
    try:
        texto = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Payload não é UTF-8 válido: {exc}") from exc

    try:
        return MeasurementMessage.model_validate_json(texto)
    except ValidationError as exc:
        raise DecodeError(f"Payload inválido para MeasurementMessage: {exc}") from exc


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def to_point(message: MeasurementMessage, received_at_ms: Optional[int] = None) -> RoomPoint:
    """
    Deriva o ponto de série temporal (1:1) a partir da mensagem.

    O sensor não informa horário; o timestamp é o instante de
    recebimento (relógio de parede do relay).
    """
    if received_at_ms is None:
        received_at_ms = now_ms()

    return RoomPoint(
        room=message.room,
        temperature=message.temperature,
        humidity=message.humidity,
        timestamp_ms=received_at_ms,
    )
