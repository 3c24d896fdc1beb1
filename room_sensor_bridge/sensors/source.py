"""
source.py

Fontes de leitura do producer.

Toda fonte expõe um único método bloqueante, read(), que devolve uma
RawReading (décimos de °C e décimos de %) ou levanta SensorReadError.
Não há retry aqui: o producer simplesmente tenta de novo no próximo
ciclo.
"""

import random
from typing import Optional, Protocol

from room_sensor_bridge.config.settings import Settings
from room_sensor_bridge.core.errors import ConfigurationError, SensorReadError
from room_sensor_bridge.core.schemas import RawReading


class SensorSource(Protocol):
    def read(self) -> RawReading: ...

    def close(self) -> None: ...


class Dht11Source:
    """
    Sensor DHT11 ligado a uma porta GPIO do Raspberry Pi.

    Usa a biblioteca adafruit_dht (extra `sensor`), importada apenas
    quando esta fonte é criada.
    """

    def __init__(self, pin: int, device=None):
        if device is None:
            device = self._abrir_dispositivo(pin)
        self.pin = pin
        self.device = device

    @staticmethod
    def _abrir_dispositivo(pin: int):
        import adafruit_dht
        import board

        try:
            gpio = getattr(board, f"D{pin}")
        except AttributeError as exc:
            raise ConfigurationError(f"GPIO D{pin} não existe nesta placa") from exc
        return adafruit_dht.DHT11(gpio, use_pulseio=False)

    def read(self) -> RawReading:
        try:
            temperatura = self.device.temperature
            umidade = self.device.humidity
        except RuntimeError as exc:
            # O DHT11 falha com frequência (checksum, timeout de pulso)
            raise SensorReadError(f"Erro lendo o sensor: {exc}") from exc

        if temperatura is None or umidade is None:
            raise SensorReadError("Sensor não retornou leitura")

        return RawReading(
            temperature_tenths_celsius=round(temperatura * 10),
            humidity_tenths_percent=round(umidade * 10),
        )

    def close(self) -> None:
        self.device.exit()


class SimulatedSensorSource:
    """
    Sensor simulado, para rodar o producer sem hardware.

    Gera valores aleatórios em faixas plausíveis para um ambiente
    interno: 15–30 °C e 30–70 % de umidade.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def read(self) -> RawReading:
        return RawReading(
            temperature_tenths_celsius=self.rng.randint(150, 300),
            humidity_tenths_percent=self.rng.randint(300, 700),
        )

    def close(self) -> None:
        pass


def criar_sensor(settings: Settings) -> SensorSource:
    if settings.SENSOR_KIND == "simulated":
        return SimulatedSensorSource()
    return Dht11Source(settings.DHT11_PIN)
