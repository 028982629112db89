"""Canonical order status resolution.

The platform reports order status inconsistently across API versions: a
textual label may live on ``situacao.nome``, ``situacao.valor``, a nested
``situacao.situacao`` object or the order itself, while the numeric code sits
on ``situacao.id``. Text labels mirror what the operator sees in the
platform's UI, so they win over the static code table below, which is only a
fallback and can go stale when the platform relabels codes.

Resolution order:

1. first non-empty string among ``TEXT_EXTRACTORS``;
2. code from ``CODE_EXTRACTORS`` looked up in ``STATUS_CODE_LABELS``;
3. ``"Status {code}"`` for unknown codes;
4. ``DEFAULT_STATUS``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

DEFAULT_STATUS = "Aguardando Processamento"

# Code 24 was historically labelled "Reagendado"; the platform now reports it
# as "Verificado".
STATUS_CODE_LABELS: Dict[int, str] = {
    0: "Em Aberto",
    1: "Atendido",
    2: "Cancelado",
    3: "Em Andamento",
    4: "Venda Agenciada",
    5: "Verificado",
    6: "Aguardando",
    7: "Não Entregue",
    8: "Entregue",
    9: "Em Digitação",
    10: "Checado",
    11: "Enviado",
    12: "Pronto para Envio",
    13: "Pendente",
    14: "Faturado",
    15: "Pronto",
    16: "Impresso",
    17: "Separado",
    18: "Embalado",
    19: "Coletado",
    20: "Em Trânsito",
    21: "Devolvido",
    22: "Extraviado",
    23: "Tentativa de Entrega",
    24: "Verificado",
    25: "Bloqueado",
    26: "Suspenso",
    27: "Processando",
    28: "Aprovado",
    29: "Reprovado",
    30: "Estornado",
}


def _lookup(payload: Any, path: Tuple[str, ...]) -> Any:
    value = payload
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


@dataclass(frozen=True)
class TextField:
    path: Tuple[str, ...]

    def extract(self, order: Dict[str, Any]) -> Optional[str]:
        value = _lookup(order, self.path)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


@dataclass(frozen=True)
class CodeField:
    path: Tuple[str, ...]

    def extract(self, order: Dict[str, Any]) -> Optional[int]:
        value = _lookup(order, self.path)
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        return None


TEXT_EXTRACTORS: Sequence[TextField] = (
    TextField(("situacao", "nome")),
    TextField(("situacao", "descricao")),
    TextField(("situacao", "valor")),
    TextField(("situacao", "texto")),
    TextField(("situacao", "status")),
    TextField(("situacao", "situacao", "nome")),
    TextField(("situacao", "situacao", "descricao")),
    TextField(("situacao", "situacao", "valor")),
    TextField(("status", "nome")),
    TextField(("status", "descricao")),
    TextField(("status", "valor")),
    TextField(("situacaoNome",)),
    TextField(("statusNome",)),
    TextField(("situacao",)),
    TextField(("status",)),
)

CODE_EXTRACTORS: Sequence[CodeField] = (
    CodeField(("situacao", "id")),
    CodeField(("situacao", "codigo")),
    CodeField(("situacao", "situacao", "id")),
    CodeField(("situacaoId",)),
    CodeField(("statusId",)),
)


class StatusResolver:

    def __init__(
        self,
        text_extractors: Sequence[TextField] = TEXT_EXTRACTORS,
        code_extractors: Sequence[CodeField] = CODE_EXTRACTORS,
        code_labels: Optional[Dict[int, str]] = None,
        default: str = DEFAULT_STATUS,
    ):
        self.text_extractors = text_extractors
        self.code_extractors = code_extractors
        self.code_labels = STATUS_CODE_LABELS if code_labels is None else code_labels
        self.default = default

    def status_code(self, order: Dict[str, Any]) -> Optional[int]:
        for extractor in self.code_extractors:
            code = extractor.extract(order)
            if code is not None:
                return code
        return None

    def resolve(self, order: Dict[str, Any]) -> str:
        for extractor in self.text_extractors:
            text = extractor.extract(order)
            if text:
                return text

        code = self.status_code(order)
        if code is not None:
            return self.code_labels.get(code, f"Status {code}")

        return self.default


status_resolver = StatusResolver()


def resolve_status(order: Dict[str, Any]) -> str:
    return status_resolver.resolve(order)
