"""
modelagem_banco.py

Responsável por:
- Criar o engine do SQLAlchemy usando DB_URL das configurações.
- Definir a tabela de pontos por cômodo ('room_measurements'),
  usada quando STORE_BACKEND=sql.
- Expor funções para criar sessão e inicializar o banco.

"""

from sqlalchemy import (
    create_engine,
    BigInteger,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from room_sensor_bridge.config.settings import get_settings

# --------------------------------------------------------------------
# Engine e Base
# --------------------------------------------------------------------

engine = create_engine(get_settings().DB_URL, echo=False, future=True)

Base = declarative_base()

# Factory de sessão: cada sessão é uma "conversa" com o banco
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def criar_sessao():
    """
    Cria e retorna uma nova sessão de banco de dados.

    Uso típico:

        sessao = criar_sessao()
        try:
            # operações com o banco
        finally:
            sessao.close()
    """
    return SessionLocal()


# --------------------------------------------------------------------
# Modelo de pontos por cômodo
# --------------------------------------------------------------------


class RoomMeasurement(Base):
    """
    Um ponto de série temporal recebido pelo relay.

    A combinação (measurement, room, timestamp_ms) é única: regravar o
    mesmo ponto (reentrega do broker) atualiza a linha existente em vez
    de duplicá-la.
    """

    __tablename__ = "room_measurements"
    __table_args__ = (
        UniqueConstraint(
            "measurement", "room", "timestamp_ms", name="uq_room_measurements_point"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Nome da medição (sempre "room_measurement" na versão 1)
    measurement = Column(String(100), nullable=False)

    # Tag: identificador do cômodo (ex.: "kitchen")
    room = Column(String(100), nullable=False, index=True)

    # Instante de recebimento, em ms desde epoch
    timestamp_ms = Column(BigInteger, nullable=False, index=True)

    temperature = Column(Float, nullable=False)
    humidity = Column(Float, nullable=False)

    ingested_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<RoomMeasurement(id={self.id}, room={self.room}, "
            f"timestamp_ms={self.timestamp_ms}, "
            f"temperature={self.temperature}, humidity={self.humidity})>"
        )


# --------------------------------------------------------------------
# Inicialização do banco
# --------------------------------------------------------------------


def inicializar_banco():
    """
    Cria todas as tabelas definidas em Base.metadata, se ainda não existirem.

    Chamado pelo relay na inicialização quando STORE_BACKEND=sql.
    """
    Base.metadata.create_all(engine)


# Permite rodar diretamente: `python -m room_sensor_bridge.database.modelagem_banco`
if __name__ == "__main__":
    inicializar_banco()
    print("Tabelas criadas com sucesso em:", get_settings().DB_URL)
