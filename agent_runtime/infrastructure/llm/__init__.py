"""Language providers"""
from .rule_based import RuleBasedLanguageProvider, is_opt_out_message, extract_info
from .groq import GroqLanguageProvider
from .factory import LanguageProviderFactory, select_language_provider
