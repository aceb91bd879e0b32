# src/atlas_ci/__init__.py
"""
Atlas CI: engine de orquestração de jobs de integração contínua.

Este pacote raiz define o namespace público do Atlas CI, um engine que
interpreta documentos declarativos de pipeline (stages, variáveis,
fragments reutilizáveis e jobs) e os executa de forma rastreável.

Princípios centrais:
    - O pipeline é uma sequência estrita de stages (barreira entre stages)
    - Jobs de um mesmo stage executam concorrentemente
    - Configuração, documento, execução e resultados são responsabilidades separadas
    - Toda falha terminal é registrada com causa e histórico de tentativas

Arquitetura em alto nível:
    - core.config       → carregamento, merge e hashing da configuração do engine
    - core.document     → modelo do documento de pipeline e merge de fragments
    - core.engine       → resolução de ordem/variáveis, scheduler e executor
    - core.runtime      → colaboradores externos (ambientes, SCM)
    - core.cache        → cache incremental por (projeto, ref, job)
    - core.report       → agregação de status do pipeline
    - core.traceability → Manifest e Event Log

Limites explícitos:
    - Não implementa parser YAML próprio
    - Não conhece semântica de toolchains específicas
    - Não oferece UI de visualização
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
