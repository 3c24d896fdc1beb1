"""
errors.py

Hierarquia de exceções do room-sensor-bridge.

Erros por ciclo (producer) ou por mensagem (relay) são tratados no
próprio laço e nunca o encerram. Erros de configuração e de conexão
inicial são fatais na inicialização.
"""


class BridgeError(Exception):
    """Base para todos os erros do projeto."""


class ConfigurationError(BridgeError):
    """Configuração inválida ou incompleta; fatal na inicialização."""


class SensorReadError(BridgeError):
    """Falha ao ler o sensor físico."""


class PublishError(BridgeError):
    """Falha ao publicar (ou confirmar) uma medição no broker."""


class DecodeError(BridgeError):
    """Payload recebido não é uma MeasurementMessage válida."""


class StoreWriteError(BridgeError):
    """Falha transitória ao gravar pontos no store."""


class StoreUnavailableError(BridgeError):
    """O store não pode mais ser usado (credenciais, bucket, falhas seguidas)."""


class BrokerError(BridgeError):
    """Base para erros relacionados ao broker MQTT."""


class BrokerConnectError(BrokerError):
    """Conexão com o broker recusada ou sem CONNACK."""


class SubscribeError(BrokerError):
    """O cliente MQTT recusou o pedido de assinatura."""


class ConnectionLost(BrokerError):
    """Operação exigia conexão ativa, mas o transporte caiu."""
