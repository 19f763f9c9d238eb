"""Ticket prompt construction and content-based routing of the main responsible."""

from __future__ import annotations

DATABASE_OWNER = "Walter"
DEVELOPMENT_OWNER = "Denilson"

# Any of these in the request routes the ticket to the database owner
DATABASE_KEYWORDS = (
    "banco de dados",
    "database",
    "sql",
    "exclusão em massa",
    "excluir dados",
    "migração de dados",
    "backup",
    "restore",
    "postgresql",
    "mysql",
    "mongodb",
    "firebase",
    "firestore",
    "dados",
    "relatório",
    "consulta",
    "query",
)

SYSTEM_PROMPT = (
    "Você é um assistente especializado em criar tickets técnicos para sindicatos. "
    "Seja direto, técnico e siga exatamente o formato solicitado. "
    f"Para banco de dados/relatórios, atribua ao {DATABASE_OWNER}; "
    f"para desenvolvimento, ao {DEVELOPMENT_OWNER}. "
    "Crie títulos específicos e descritivos para cada tarefa."
)

_TICKET_TEMPLATE = """Crie um ticket detalhado para o sindicato {scope} com base nesta solicitação: {request_text}

Formato obrigatório:
## {scope} - [TÍTULO]

### Descrição: [2-3 parágrafos técnicos]

### Duração Estimada: [período]

### FASE 1 – [Nome]
#### [TAREFA 1]
• Descrição: [contexto e objetivo]
• Passos: [implementação]
• Critérios: [aceitação]

#### [TAREFA 2]
• Descrição: [contexto e objetivo]
• Passos: [implementação]
• Critérios: [aceitação]

### FASE 2 – [Nome]
#### [TAREFA 1]
• Descrição: [contexto e objetivo]
• Passos: [implementação]
• Critérios: [aceitação]

### Responsáveis:
- Responsável Principal: {responsible}
- Desenvolvimento: {dev_owner}
- Banco de Dados: {db_owner}

### Prioridade: [Alta/Média/Baixa] - [justificativa]

### Requisitos Técnicos:
• [requisitos]

### Observações:
• [observações]"""


def determine_responsible(request_text: str) -> str:
    """Database-flavoured requests go to the database owner, everything else to development."""
    lowered = request_text.lower()
    for keyword in DATABASE_KEYWORDS:
        if keyword in lowered:
            return DATABASE_OWNER
    return DEVELOPMENT_OWNER


def build_ticket_prompt(scope: str, request_text: str, responsible: str) -> str:
    return _TICKET_TEMPLATE.format(
        scope=scope,
        request_text=request_text,
        responsible=responsible,
        dev_owner=DEVELOPMENT_OWNER,
        db_owner=DATABASE_OWNER,
    )
