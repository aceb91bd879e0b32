# src/atlas_ci/core/document/errors.py
"""Erros canônicos do documento de pipeline (Atlas CI).

O documento de pipeline é a entrada declarativa crítica do engine.
Qualquer falha estrutural é fatal: o pipeline nunca inicia.
"""


class DocumentError(Exception):
    """Erro base do domínio de documento de pipeline."""


class DocumentNotFoundError(DocumentError):
    """Arquivo do documento não existe no caminho informado."""


class MalformedDocumentError(DocumentError):
    """Documento estruturalmente inválido."""


class UnsupportedDocumentFormatError(MalformedDocumentError):
    """Extensão de documento não suportada (v1: YAML/JSON)."""


class DuplicateKeyError(MalformedDocumentError):
    """Chave repetida dentro de um mapping do documento."""


class DuplicateJobNameError(DuplicateKeyError):
    """Dois jobs declarados com o mesmo nome."""


class DuplicateStageError(MalformedDocumentError):
    """Stage declarado mais de uma vez em `stages`."""


class UnknownStageError(MalformedDocumentError):
    """Job referencia um stage que não está em `stages`."""


class UnknownFragmentError(MalformedDocumentError):
    """`extends` referencia um fragment inexistente."""


class FragmentCycleError(MalformedDocumentError):
    """Cadeia de `extends` forma um ciclo."""


class InvalidJobDefinitionError(MalformedDocumentError):
    """Valor de chave reconhecida com tipo ou domínio inválido."""
