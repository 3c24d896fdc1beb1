"""
consumer.py

Relay MQTT → store de séries temporais.

Responsável por:
- Conectar ao broker com sessão persistente e last-will (BrokerSession).
- Consumir as mensagens de `home/sensors`, na ordem de entrega.
- Validar e transformar cada payload em um ponto (RoomPoint).
- Gravar cada ponto no store antes de consumir a próxima mensagem.
- Isolar erros por mensagem: um payload inválido ou uma falha de
  escrita não derrubam o relay.
- Acionar o ReconnectController quando o transporte cair.

A entrega é "pelo menos uma vez": a mensagem só recebe PUBACK depois
de tratada. O relay não deduplica; o store tolera pontos repetidos.
"""

import sys
import time
from dataclasses import dataclass
from typing import Callable, Optional

from paho.mqtt import client as mqtt

from room_sensor_bridge.config.settings import Settings, get_settings
from room_sensor_bridge.core.errors import (
    BridgeError,
    BrokerError,
    ConnectionLost,
    DecodeError,
    StoreUnavailableError,
    StoreWriteError,
    SubscribeError,
)
from room_sensor_bridge.core.schemas import RoomPoint, decode_measurement, now_ms, to_point
from room_sensor_bridge.database.influx import StoreSink, criar_store
from room_sensor_bridge.mqtt.reconnect import ReconnectController
from room_sensor_bridge.mqtt.session import BrokerSession
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PipelineStats:
    received: int = 0
    stored: int = 0
    decode_errors: int = 0
    store_errors: int = 0
    reconnects: int = 0


class MessagePipeline:
    """
    Laço principal do relay.

    Para cada item recebido da sessão:

    - mensagem: decodifica, deriva o ponto e grava no store;
    - None com sessão ativa: leitura vazia, segue o laço;
    - None com sessão caída: tenta reconectar; se não conseguir, o
      laço termina (única saída normal além de stop()).
    """

    def __init__(
        self,
        session: BrokerSession,
        reconnector: ReconnectController,
        store: StoreSink,
        clock: Callable[[], int] = now_ms,
        max_store_failures: int = 5,
        decode_errors_fatal: bool = False,
        poll_timeout: float = 1.0,
        write_attempts: int = 3,
        write_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.reconnector = reconnector
        self.store = store
        self.clock = clock
        self.max_store_failures = max_store_failures
        self.decode_errors_fatal = decode_errors_fatal
        self.poll_timeout = poll_timeout
        self.write_attempts = write_attempts
        self.write_backoff = write_backoff
        self.sleep = sleep

        self.stats = PipelineStats()
        self._falhas_consecutivas = 0
        self._rodando = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: BrokerSession,
        store: StoreSink,
    ) -> "MessagePipeline":
        reconnector = ReconnectController(
            session,
            max_attempts=settings.RECONNECT_MAX_ATTEMPTS,
            delay_seconds=settings.RECONNECT_DELAY_SECONDS,
        )
        return cls(
            session,
            reconnector,
            store,
            max_store_failures=settings.STORE_MAX_CONSECUTIVE_FAILURES,
            decode_errors_fatal=settings.DECODE_ERRORS_FATAL,
            poll_timeout=settings.MQTT_POLL_TIMEOUT_SECONDS,
            write_attempts=settings.STORE_WRITE_MAX_ATTEMPTS,
            write_backoff=settings.STORE_WRITE_BACKOFF_SECONDS,
        )

    # ----- por mensagem ------------------------------------------------

    def handle_message(self, message: mqtt.MQTTMessage) -> RoomPoint:
        """
        Decodifica a mensagem e grava o ponto derivado.

        Levanta DecodeError ou StoreWriteError, restritos a esta mensagem.
        """
        medicao = decode_measurement(message.payload)
        logger.info(
            "Medição recebida: %s",
            medicao,
            extra={"topic": message.topic, "mid": message.mid, "room": medicao.room},
        )

        ponto = to_point(medicao, received_at_ms=self.clock())
        self._gravar(ponto)
        return ponto

    def _gravar(self, ponto: RoomPoint) -> None:
        """
        Grava um ponto, retentando falhas transitórias com backoff
        exponencial. Após write_attempts tentativas, levanta a última
        StoreWriteError.
        """
        delay = self.write_backoff

        for tentativa in range(1, self.write_attempts + 1):
            try:
                self.store.write_points([ponto])
                return
            except StoreWriteError as exc:
                self.stats.store_errors += 1
                if tentativa >= self.write_attempts:
                    raise

                logger.warning(
                    "Erro ao gravar ponto (tentativa %s/%s). Retentando em %.2fs: %s",
                    tentativa,
                    self.write_attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)
                delay *= 2  # backoff exponencial

    def process(self, message: mqtt.MQTTMessage) -> bool:
        """
        Trata uma mensagem isolando seus erros.

        Retorna True se o ponto foi gravado.

        Só confirma (PUBACK) mensagens tratadas: gravadas ou descartadas
        por payload inválido. Uma mensagem cujo ponto não foi gravado
        fica sem confirmação e o broker a reentrega quando a sessão
        persistente for retomada.

        Levanta:
            DecodeError se decode_errors_fatal estiver ligado.
            StoreUnavailableError se o store se tornou inutilizável.
        """
        self.stats.received += 1

        try:
            self.handle_message(message)
        except DecodeError as exc:
            self.stats.decode_errors += 1
            if self.decode_errors_fatal:
                logger.error("Payload inválido em %s; encerrando: %s", message.topic, exc)
                raise
            logger.warning(
                "Payload inválido em %s; mensagem descartada: %s",
                message.topic,
                exc,
                extra={"topic": message.topic, "mid": message.mid},
            )
            self.session.ack(message)
            return False
        except StoreWriteError as exc:
            self._falhas_consecutivas += 1
            logger.error(
                "Ponto não gravado após %s tentativas (%s/%s mensagens seguidas); "
                "mensagem %s fica sem confirmação: %s",
                self.write_attempts,
                self._falhas_consecutivas,
                self.max_store_failures,
                message.mid,
                exc,
                extra={"topic": message.topic, "mid": message.mid},
            )
            if self._falhas_consecutivas >= self.max_store_failures:
                raise StoreUnavailableError(
                    f"{self._falhas_consecutivas} mensagens seguidas sem gravar no store"
                ) from exc
            return False

        self.stats.stored += 1
        self._falhas_consecutivas = 0
        self.session.ack(message)
        return True

    def _garantir_assinatura(self) -> None:
        """
        Assina o tópico se a assinatura ainda não estiver registrada.

        Falhas não interrompem o laço: a assinatura é tentada de novo
        na próxima leitura vazia, e uma queda leva à reconexão.
        """
        try:
            self.session.ensure_subscription()
        except (ConnectionLost, SubscribeError) as exc:
            logger.warning("Assinatura pendente; nova tentativa na próxima leitura vazia: %s", exc)

    # ----- laço principal ----------------------------------------------

    def run(self) -> None:
        logger.info("Aguardando mensagens...")
        self._rodando = True

        while self._rodando:
            message = self.session.receive(self.poll_timeout)

            if message is not None:
                self.process(message)
                continue

            if self.session.is_connected():
                if not self.session.state.subscription_registered:
                    self._garantir_assinatura()
                continue

            if not self.reconnector.attempt_reconnect():
                break

            self.stats.reconnects += 1
            self._garantir_assinatura()

        self._rodando = False

    def stop(self) -> None:
        self._rodando = False


def run_relay(settings: Optional[Settings] = None) -> int:
    """
    Função principal do relay.

    - cria o store configurado;
    - conecta ao broker e assina o tópico (falhas aqui são fatais,
      sem retry);
    - entra no laço do pipeline até a reconexão se esgotar, o store
      ficar inutilizável ou Ctrl+C.

    Retorna o código de saída do processo.
    """
    settings = settings or get_settings()

    try:
        store = criar_store(settings)
    except BridgeError:
        logger.exception("Configuração do store inválida.")
        return 1

    session = BrokerSession(settings)
    try:
        session.connect()
        session.ensure_subscription()
    except BrokerError:
        logger.exception("Falha ao iniciar sessão com o broker MQTT.")
        store.close()
        return 1

    pipeline = MessagePipeline.from_settings(settings, session, store)

    logger.info(
        "Iniciando relay. Broker=%s:%s, Tópico=%s, Store=%s",
        settings.MQTT_BROKER_HOST,
        settings.MQTT_BROKER_PORT,
        settings.MQTT_TOPIC,
        settings.STORE_BACKEND,
    )

    codigo = 0
    try:
        pipeline.run()
    except KeyboardInterrupt:
        logger.info("Encerrando relay (Ctrl+C).")
    except (DecodeError, StoreUnavailableError):
        logger.critical("Erro fatal no pipeline; encerrando relay.", exc_info=True)
        codigo = 1
    finally:
        session.disconnect()
        store.close()

    logger.info("Encerrado. Estatísticas: %s", pipeline.stats)
    return codigo


def main() -> None:
    sys.exit(run_relay())


if __name__ == "__main__":
    main()
