"""Taxonomia de erros da integração com Azure DevOps."""


class WorkItemIntegrationError(Exception):
    """Base de todos os erros da integração."""


class ConfigurationError(WorkItemIntegrationError):
    """Conexão ou tipo ausente/inválido, ou nenhuma credencial utilizável."""


class ConfigNotFound(ConfigurationError):
    """Nome de conexão ou tipo sem registro correspondente na fonte declarativa."""


class ValidationError(WorkItemIntegrationError):
    """Entrada do chamador malformada (tipo desconhecido, página não positiva, campo obrigatório vazio)."""


class AuthenticationError(WorkItemIntegrationError):
    """Estratégias de autenticação esgotadas ou a única estratégia configurada falhou."""


class TransportError(WorkItemIntegrationError):
    """Falha de rede (exceto timeout)."""


class TransportTimeout(TransportError):
    """Timeout rígido da chamada HTTP estourado."""


class RemoteRejected(WorkItemIntegrationError):
    """Azure DevOps devolveu erro de aplicação (não-2xx)."""


class DecodeError(WorkItemIntegrationError):
    """Corpo de resposta de sucesso ilegível."""
