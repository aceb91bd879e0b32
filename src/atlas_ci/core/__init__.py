# src/atlas_ci/core/__init__.py
"""
Core do Atlas CI.

Este pacote contém a implementação canônica do engine, reunindo as
responsabilidades de carregamento de documentos, resolução de ordem,
execução de jobs, cache e rastreabilidade.

O core é projetado para ser:
    - testável de forma isolada (colaboradores externos via Protocols)
    - livre de estado global mutável
    - explícito sobre falhas (nenhuma falha é descartada silenciosamente)
"""
