"""
session.py

Sessão MQTT do relay.

Responsável por:
- Criar o cliente MQTT v5 com client ID fixo e ack manual.
- Registrar a mensagem de last-will antes de conectar.
- Conectar com sessão persistente (clean_start=False), para que o
  broker guarde as mensagens QoS 1 enquanto o relay estiver fora.
- (Re)assinar o tópico com Subscription Identifier quando o broker
  não retomou a sessão anterior.
- Entregar as mensagens recebidas, uma a uma, ao pipeline.

Não há thread de rede: o loop do paho roda dentro de receive(), na
mesma thread do pipeline. O estado da sessão só muda ali.

Máquina de estados:

    DISCONNECTED → CONNECTING → CONNECTED{session_present}
    CONNECTED    → DISCONNECTED   (queda do transporte)
    CONNECTING   → DISCONNECTED   (tentativa sem sucesso)
"""

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from paho.mqtt import client as mqtt
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties

from room_sensor_bridge.config.settings import Settings
from room_sensor_bridge.core.errors import BrokerConnectError, ConnectionLost, SubscribeError
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)

# Intervalo de cada volta do loop de rede enquanto aguarda o CONNACK
_CONNACK_POLL_SECONDS = 0.1


class SessionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class SessionState:
    """
    Visão do relay sobre a conexão com o broker.

    subscription_registered só é verdadeiro enquanto connected for
    verdadeiro.
    """

    connected: bool = False
    session_present: bool = False
    subscription_registered: bool = False


def sub_id(identificador: int) -> Properties:
    props = Properties(PacketTypes.SUBSCRIBE)
    props.SubscriptionIdentifier = identificador
    return props


class BrokerSession:
    def __init__(self, settings: Settings, client_factory: Callable[..., mqtt.Client] = mqtt.Client):
        self.settings = settings
        self.state = SessionState()
        self.status = SessionStatus.DISCONNECTED

        self._inbox: Deque[mqtt.MQTTMessage] = deque()
        self._connack: Optional[tuple] = None
        # mid do SUBSCRIBE -> reason codes do SUBACK
        self._subacks: Dict[int, List] = {}

        self._client = client_factory(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.MQTT_CLIENT_ID,
            protocol=mqtt.MQTTv5,
            manual_ack=True,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.on_subscribe = self._on_subscribe

    # ----- callbacks do paho -------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._connack = (reason_code, bool(flags.session_present))

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        self._subacks[mid] = list(reason_code_list)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if self.state.connected:
            logger.warning("Desconectado do broker MQTT. Motivo=%s", reason_code)
        self._marcar_desconectado()

    def _on_message(self, client, userdata, message):
        self._inbox.append(message)

    # ----- ciclo de vida -----------------------------------------------

    def connect(self) -> bool:
        """
        Conecta ao broker pedindo sessão persistente e registrando o
        last-will.

        Retorna:
            session_present informado pelo broker (True se a sessão
            anterior, com a assinatura, foi retomada).

        Levanta:
            BrokerConnectError se a conexão falhar ou o CONNACK não
            chegar dentro de MQTT_CONNECT_TIMEOUT_SECONDS.
        """
        s = self.settings
        self._client.will_set(s.MQTT_LWT_TOPIC, payload=s.MQTT_LWT_PAYLOAD, qos=s.MQTT_QOS, retain=False)

        connect_props = Properties(PacketTypes.CONNECT)
        connect_props.SessionExpiryInterval = s.MQTT_SESSION_EXPIRY_SECONDS

        self._iniciar_tentativa()
        try:
            self._client.connect(
                s.MQTT_BROKER_HOST,
                s.MQTT_BROKER_PORT,
                keepalive=s.MQTT_KEEPALIVE,
                clean_start=False,
                properties=connect_props,
            )
        except (OSError, ValueError) as exc:
            self._marcar_desconectado()
            raise BrokerConnectError(
                f"Falha ao conectar em {s.MQTT_BROKER_HOST}:{s.MQTT_BROKER_PORT}: {exc}"
            ) from exc

        motivo = self._aguardar_connack()
        if motivo is not None:
            raise BrokerConnectError(motivo)

        return self.state.session_present

    def reconnect(self) -> bool:
        """
        Uma única tentativa de reconexão, reaproveitando as opções do
        connect() (sessão persistente, last-will, expiração).

        Falhas não são levantadas: retorna False.
        """
        self._iniciar_tentativa()
        try:
            self._client.reconnect()
        except (OSError, ValueError) as exc:
            logger.debug("Reconexão recusada: %s", exc)
            self._marcar_desconectado()
            return False

        motivo = self._aguardar_connack()
        if motivo is not None:
            logger.debug("Reconexão sem sucesso: %s", motivo)
            return False
        return True

    def ensure_subscription(self) -> bool:
        """
        Assina o tópico de entrada se o broker não retomou a sessão.

        Idempotente: pode ser chamado após toda (re)conexão; só envia
        SUBSCRIBE quando a assinatura ainda não está registrada. A
        assinatura só conta como registrada depois de um SUBACK sem
        reason code de falha.

        Retorna:
            True se a assinatura foi feita nesta chamada.

        Levanta:
            ConnectionLost se a sessão estiver (ou cair) desconectada.
            SubscribeError se o cliente ou o broker recusarem a assinatura.
        """
        if not self.is_connected():
            raise ConnectionLost("Não é possível assinar: sessão desconectada.")

        if self.state.session_present or self.state.subscription_registered:
            return False

        s = self.settings
        logger.info("Assinando tópico %s (subscription id=%s)...", s.MQTT_TOPIC, s.MQTT_SUBSCRIPTION_ID)
        rc, mid = self._client.subscribe(
            s.MQTT_TOPIC,
            qos=s.MQTT_QOS,
            properties=sub_id(s.MQTT_SUBSCRIPTION_ID),
        )
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise SubscribeError(f"Falha ao assinar {s.MQTT_TOPIC}: {mqtt.error_string(rc)}")

        codigos = self._aguardar_suback(mid)
        falhas = [str(c) for c in codigos if c.is_failure]
        if falhas:
            raise SubscribeError(f"Broker recusou a assinatura de {s.MQTT_TOPIC}: {', '.join(falhas)}")

        self.state.subscription_registered = True
        logger.info("Tópico %s assinado.", s.MQTT_TOPIC)
        return True

    def is_connected(self) -> bool:
        if self.state.connected and not self._client.is_connected():
            self._marcar_desconectado()
        return self.state.connected

    def receive(self, timeout: float = 1.0) -> Optional[mqtt.MQTTMessage]:
        """
        Retorna a próxima mensagem recebida, ou None.

        None é o sentinela de "sem dados": pode ser apenas uma leitura
        vazia (ainda conectado) ou a queda do transporte. Quem chama
        distingue os dois casos com is_connected().
        """
        if self._inbox:
            return self._inbox.popleft()

        if not self.state.connected:
            return None

        rc = self._client.loop(timeout=timeout)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            if self.state.connected:
                logger.warning("Loop de rede MQTT interrompido: %s", mqtt.error_string(rc))
            self._marcar_desconectado()

        if self._inbox:
            return self._inbox.popleft()
        return None

    def ack(self, message: mqtt.MQTTMessage) -> None:
        """
        Confirma ao broker (PUBACK) uma mensagem já tratada pelo pipeline.
        """
        if message.qos == 0 or not self.state.connected:
            return
        self._client.ack(message.mid, message.qos)

    def disconnect(self) -> None:
        """
        Encerramento limpo (o broker não publica o last-will).

        Melhor esforço: falhas são apenas registradas.
        """
        if not self.is_connected():
            return

        logger.info("Desconectando do broker MQTT.")
        try:
            self._client.disconnect()
        except Exception as exc:
            logger.warning("Erro ao desconectar do broker MQTT: %s", exc)
        finally:
            self._marcar_desconectado()

    # ----- internos ----------------------------------------------------

    def _iniciar_tentativa(self) -> None:
        self.status = SessionStatus.CONNECTING
        self._connack = None
        self._subacks.clear()
        self._inbox.clear()

    def _aguardar_suback(self, mid: int) -> List:
        """
        Roda o loop de rede até o SUBACK do SUBSCRIBE `mid` chegar.

        Mensagens recebidas enquanto isso ficam na fila de entrada.
        """
        s = self.settings
        limite = time.monotonic() + s.MQTT_CONNECT_TIMEOUT_SECONDS

        while mid not in self._subacks:
            rc = self._client.loop(timeout=_CONNACK_POLL_SECONDS)
            if mid in self._subacks:
                break
            if rc != mqtt.MQTT_ERR_SUCCESS:
                self._marcar_desconectado()
                raise ConnectionLost(f"Conexão encerrada antes do SUBACK: {mqtt.error_string(rc)}")
            if time.monotonic() >= limite:
                raise SubscribeError(f"SUBACK não recebido em {s.MQTT_CONNECT_TIMEOUT_SECONDS}s")

        return self._subacks.pop(mid)

    def _aguardar_connack(self) -> Optional[str]:
        """
        Roda o loop de rede até o CONNACK chegar.

        Retorna None em caso de sucesso, ou a descrição da falha.
        """
        s = self.settings
        limite = time.monotonic() + s.MQTT_CONNECT_TIMEOUT_SECONDS

        while self._connack is None:
            rc = self._client.loop(timeout=_CONNACK_POLL_SECONDS)
            if self._connack is not None:
                break
            if rc != mqtt.MQTT_ERR_SUCCESS:
                self._marcar_desconectado()
                return f"Conexão encerrada antes do CONNACK: {mqtt.error_string(rc)}"
            if time.monotonic() >= limite:
                self._marcar_desconectado()
                return f"CONNACK não recebido em {s.MQTT_CONNECT_TIMEOUT_SECONDS}s"

        reason_code, session_present = self._connack
        if reason_code.is_failure:
            self._marcar_desconectado()
            return f"Broker recusou a conexão: {reason_code}"

        self.state.connected = True
        self.state.session_present = session_present
        # Sessão retomada: o broker ainda guarda a assinatura.
        self.state.subscription_registered = session_present
        self.status = SessionStatus.CONNECTED

        logger.info(
            "Conectado a '%s:%s' com MQTT versão 5 (session_present=%s)",
            s.MQTT_BROKER_HOST,
            s.MQTT_BROKER_PORT,
            session_present,
        )
        return None

    def _marcar_desconectado(self) -> None:
        self.state.connected = False
        self.state.subscription_registered = False
        self.status = SessionStatus.DISCONNECTED
