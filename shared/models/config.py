from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Describes one environment setting a client needs before it can boot.

    The full variable name is derived by the client, e.g. env_key "BASE_URL" of the
    Qdrant RAG client resolves to "RAG_QDRANT_BASE_URL".

    Attributes:
        env_key (str): Key suffix of the environment variable.
        val_type (str): Expected type: "string", "number", "bool" or "list".
        default (str | int | float | bool | list | None): Value used when the variable is unset.
            None marks the variable as required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
