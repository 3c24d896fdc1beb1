"""
producer.py

Producer MQTT do projeto room-sensor-bridge.

Responsável por:
- Ler o sensor a cada SAMPLE_INTERVAL_SECONDS.
- Converter a leitura bruta para a mensagem publicada (°F e %).
- Publicar uma mensagem por ciclo em `home/sensors` com QoS 1,
  aguardando a confirmação do broker.

Erros de leitura ou publicação são registrados e o ciclo seguinte
acontece normalmente: sem backoff, sem retry extra.
"""

import sys
import time
from typing import Callable, Optional

from paho.mqtt import client as mqtt

from room_sensor_bridge.config.settings import Settings, get_settings
from room_sensor_bridge.core.errors import BridgeError, PublishError
from room_sensor_bridge.core.schemas import SensorMeasurement, to_measurement
from room_sensor_bridge.sensors.source import SensorSource, criar_sensor
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class SensorPublisher:
    """
    Publica as leituras de um sensor em um tópico MQTT.

    O cliente MQTT precisa estar conectado e com o loop de rede rodando
    (loop_start) para que o PUBACK seja recebido.
    """

    def __init__(
        self,
        source: SensorSource,
        client: mqtt.Client,
        topic: str = "home/sensors",
        qos: int = 1,
        publish_timeout: float = 5.0,
    ):
        self.source = source
        self.client = client
        self.topic = topic
        self.qos = qos
        self.publish_timeout = publish_timeout

    def read_and_publish(self) -> SensorMeasurement:
        """
        Um ciclo: lê o sensor, converte, publica e aguarda o PUBACK.

        Levanta SensorReadError ou PublishError.
        """
        medicao = to_measurement(self.source.read())
        payload = medicao.model_dump_json()

        info = self.client.publish(self.topic, payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Falha ao publicar em {self.topic}: {mqtt.error_string(info.rc)}")

        try:
            info.wait_for_publish(timeout=self.publish_timeout)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(f"Falha ao publicar em {self.topic}: {exc}") from exc

        if not info.is_published():
            raise PublishError(
                f"Publicação em {self.topic} não confirmada em {self.publish_timeout}s"
            )

        logger.info(
            "Temperature: %sdegF, humidity: %s%%",
            round(medicao.temperature, 2),
            round(medicao.humidity, 1),
        )
        return medicao

    def run_once(self) -> bool:
        try:
            self.read_and_publish()
        except BridgeError as exc:
            logger.error("Erro ao ler ou publicar medição: %s", exc)
            return False
        return True

    def run(
        self,
        interval: float,
        sleep: Callable[[float], None] = time.sleep,
        max_cycles: Optional[int] = None,
    ) -> None:
        """
        Laço de amostragem em intervalo fixo.

        max_cycles=None roda indefinidamente (até Ctrl+C).
        """
        ciclos = 0
        while max_cycles is None or ciclos < max_cycles:
            self.run_once()
            ciclos += 1
            sleep(interval)


def criar_cliente_mqtt(settings: Settings) -> mqtt.Client:
    """
    Cria e conecta o cliente MQTT do producer.

    Falha na conexão inicial é fatal: a exceção é propagada.
    """
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=settings.PRODUCER_CLIENT_ID,
    )

    def on_connect(client, userdata, flags, reason_code, properties=None):
        logger.info("Producer conectado ao broker MQTT. Motivo=%s", reason_code)

    def on_disconnect(client, userdata, flags, reason_code, properties=None):
        logger.warning("Producer desconectado do broker MQTT. Motivo=%s", reason_code)

    client.on_connect = on_connect
    client.on_disconnect = on_disconnect

    client.connect(
        settings.MQTT_BROKER_HOST,
        settings.MQTT_BROKER_PORT,
        keepalive=settings.MQTT_KEEPALIVE,
    )

    # Loop de rede em background: necessário para receber os PUBACKs
    client.loop_start()

    return client


def run_producer(settings: Optional[Settings] = None) -> int:
    """
    Função principal do producer.

    Fluxo:
    - cria a fonte de leituras (DHT11 ou simulada);
    - cria o cliente MQTT e conecta ao broker;
    - publica uma medição a cada SAMPLE_INTERVAL_SECONDS até Ctrl+C.
    """
    settings = settings or get_settings()

    try:
        sensor = criar_sensor(settings)
        client = criar_cliente_mqtt(settings)
    except (BridgeError, OSError, ImportError):
        logger.exception("Falha ao iniciar o producer.")
        return 1

    publisher = SensorPublisher(
        sensor,
        client,
        topic=settings.MQTT_TOPIC,
        qos=settings.MQTT_QOS,
        publish_timeout=settings.PUBLISH_TIMEOUT_SECONDS,
    )

    logger.info(
        "Iniciando producer. Sensor=%s, Broker=%s:%s, intervalo %ss.",
        settings.SENSOR_KIND,
        settings.MQTT_BROKER_HOST,
        settings.MQTT_BROKER_PORT,
        settings.SAMPLE_INTERVAL_SECONDS,
    )

    try:
        publisher.run(settings.SAMPLE_INTERVAL_SECONDS)
    except KeyboardInterrupt:
        logger.info("Encerrando producer (Ctrl+C recebido).")
    finally:
        client.loop_stop()
        client.disconnect()
        sensor.close()

    return 0


def main() -> None:
    sys.exit(run_producer())


if __name__ == "__main__":
    main()
