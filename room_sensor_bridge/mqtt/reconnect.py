"""
reconnect.py

Controle de reconexão do relay após queda do transporte.

Número de tentativas e espera entre elas são constantes (sem backoff
exponencial, sem jitter). A operação é bloqueante: o pipeline fica
parado durante toda a recuperação.

A reassinatura do tópico não é feita aqui; cabe a quem chamou
verificar session_present e chamar ensure_subscription().
"""

import time
from typing import Callable

from room_sensor_bridge.mqtt.session import BrokerSession
from room_sensor_bridge.utils.logger import get_logger

logger = get_logger(__name__)


class ReconnectController:
    def __init__(
        self,
        session: BrokerSession,
        max_attempts: int = 12,
        delay_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    def attempt_reconnect(self) -> bool:
        """
        Tenta reconectar até max_attempts vezes, aguardando
        delay_seconds antes de cada tentativa.

        Retorna True na primeira tentativa bem-sucedida e False quando
        todas falharem.
        """
        logger.warning("Conexão perdida. Aguardando para tentar reconectar.")

        for tentativa in range(1, self.max_attempts + 1):
            self._sleep(self.delay_seconds)

            if self.session.reconnect():
                logger.info("Reconectado com sucesso (tentativa %s/%s).", tentativa, self.max_attempts)
                return True

            logger.warning("Tentativa de reconexão %s/%s falhou.", tentativa, self.max_attempts)

        logger.error("Não foi possível reconectar após %s tentativas.", self.max_attempts)
        return False
