# dealerbot/core/dealer/texts.py
"""
User-facing texts for the dealership assistant.

``get_text(key, lang, **fmt)`` resolves a translation (Portuguese is the
default and the fallback) and applies ``str.format`` placeholders.
Every failure path in the conversation ends in one of these
pre-authored strings.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class Translation:
    """Multi-language text storage"""
    pt: str
    en: Optional[str] = None

    def get(self, lang: str = "pt") -> str:
        """Get translation for specified language, fallback to Portuguese"""
        return getattr(self, lang, None) or self.pt


TEXTS: Dict[str, Translation] = {
    # --- Greeting ---
    "greeting": Translation(
        pt=(
            "Olá! 👋 Bem-vindo à *{dealership}*!\n\n"
            "🤖 Sou um assistente virtual com inteligência artificial e vou te ajudar "
            "a encontrar o carro ideal. Se preferir, a qualquer momento digite "
            "*vendedor* para falar com nossa equipe.\n\n"
            "Para começar, *qual é o seu nome?* 😊"
        ),
        en=(
            "Hello! 👋 Welcome to *{dealership}*!\n\n"
            "🤖 I'm an AI-powered virtual assistant and I'll help you find the right car. "
            "You can type *seller* at any time to talk to our team.\n\n"
            "To get started, *what's your name?* 😊"
        ),
    ),
    "greeting_returning": Translation(
        pt=(
            "Olá novamente! 👋\n\n"
            "Que bom ter você de volta na *{dealership}*!\n\n"
            "Vamos começar uma nova busca. *Qual é o seu nome?* 😊"
        ),
        en=(
            "Hello again! 👋\n\n"
            "Great to have you back at *{dealership}*!\n\n"
            "Let's start a new search. *What's your name?* 😊"
        ),
    ),

    # --- Discovery questions ---
    "q_budget": Translation(
        pt=(
            "Prazer em conhecer você, *{name}*! 🤝\n\n"
            "Agora vou fazer algumas perguntas rápidas para encontrar o carro ideal para você.\n\n"
            "💰 *Qual é o seu orçamento?*\n\n_Exemplo: 50000 ou 50 mil_"
        ),
        en=(
            "Nice to meet you, *{name}*! 🤝\n\n"
            "I'll ask a few quick questions to find the right car for you.\n\n"
            "💰 *What's your budget?*\n\n_Example: 50000 or 50k_"
        ),
    ),
    "q_usage": Translation(
        pt=(
            "✅ Anotado!\n\n🚗 *Qual será o uso principal do veículo?*\n\n"
            "1️⃣ Cidade (urbano)\n2️⃣ Viagem (estrada)\n3️⃣ Trabalho (app/entregas)\n"
            "4️⃣ Misto (cidade + viagem)\n\n_Digite o número da opção_"
        ),
        en=(
            "✅ Got it!\n\n🚗 *What will the car mostly be used for?*\n\n"
            "1️⃣ City\n2️⃣ Road trips\n3️⃣ Work (ride-hailing/deliveries)\n"
            "4️⃣ Mixed (city + road)\n\n_Type the option number_"
        ),
    ),
    "q_vehicle_type": Translation(
        pt=(
            "✅ Anotado!\n\n🚙 *Qual tipo de veículo você prefere?*\n\n"
            "1️⃣ Hatchback (compacto)\n2️⃣ Sedan\n3️⃣ SUV\n4️⃣ Pickup\n5️⃣ Tanto faz\n\n"
            "_Digite o número da opção_"
        ),
        en=(
            "✅ Got it!\n\n🚙 *Which body type do you prefer?*\n\n"
            "1️⃣ Hatchback\n2️⃣ Sedan\n3️⃣ SUV\n4️⃣ Pickup\n5️⃣ Any\n\n"
            "_Type the option number_"
        ),
    ),
    "err_name": Translation(
        pt="Por favor, me diga seu nome para eu poder te atender melhor! 😊",
        en="Please tell me your name so I can help you better! 😊",
    ),
    "err_budget": Translation(
        pt=(
            "❌ Por favor, digite um valor válido acima de R$ 5.000.\n\n"
            "💰 Qual é o seu orçamento?\n\n_Exemplo: 50000 ou 50 mil_"
        ),
        en=(
            "❌ Please type a valid amount above R$ 5,000.\n\n"
            "💰 What's your budget?\n\n_Example: 50000 or 50k_"
        ),
    ),
    "err_usage": Translation(
        pt=(
            "❌ Por favor, escolha uma opção válida (1, 2, 3 ou 4).\n\n"
            "🚗 Qual será o uso principal?\n\n1️⃣ Cidade\n2️⃣ Viagem\n3️⃣ Trabalho\n4️⃣ Misto\n\n"
            "_Digite o número_"
        ),
        en=(
            "❌ Please choose a valid option (1, 2, 3 or 4).\n\n"
            "🚗 Main usage?\n\n1️⃣ City\n2️⃣ Road trips\n3️⃣ Work\n4️⃣ Mixed\n\n"
            "_Type the number_"
        ),
    ),
    "err_vehicle_type": Translation(
        pt=(
            "❌ Por favor, escolha uma opção válida (1, 2, 3, 4 ou 5).\n\n"
            "🚙 Qual tipo de veículo?\n\n1️⃣ Hatch\n2️⃣ Sedan\n3️⃣ SUV\n4️⃣ Pickup\n5️⃣ Tanto faz\n\n"
            "_Digite o número_"
        ),
        en=(
            "❌ Please choose a valid option (1, 2, 3, 4 or 5).\n\n"
            "🚙 Which body type?\n\n1️⃣ Hatch\n2️⃣ Sedan\n3️⃣ SUV\n4️⃣ Pickup\n5️⃣ Any\n\n"
            "_Type the number_"
        ),
    ),
    "discovery_done": Translation(
        pt="✅ Perfeito, *{name}*!\n\n🔍 Estou buscando os melhores veículos para você na *{dealership}*...",
        en="✅ Perfect, *{name}*!\n\n🔍 Looking for the best vehicles for you at *{dealership}*...",
    ),

    # --- Search ---
    "search_empty": Translation(
        pt=(
            "😔 Não encontrei veículos que correspondam exatamente ao seu perfil no momento.\n\n"
            "*Algumas sugestões para ampliar sua busca:*\n{suggestions}\n\n"
            "*O que você gostaria de fazer?*\n"
            "1️⃣ Buscar com critérios mais amplos\n"
            "2️⃣ Ver todos os veículos disponíveis\n"
            "3️⃣ Falar com um vendedor\n\n"
            "_Digite o número da opção ou \"vendedor\" para falar com nossa equipe._ 🤝"
        ),
        en=(
            "😔 I couldn't find vehicles that exactly match your profile right now.\n\n"
            "*Some suggestions to broaden your search:*\n{suggestions}\n\n"
            "*What would you like to do?*\n"
            "1️⃣ Search with broader criteria\n"
            "2️⃣ See all available vehicles\n"
            "3️⃣ Talk to a seller\n\n"
            "_Type the option number or \"seller\" to talk to our team._ 🤝"
        ),
    ),
    "suggest_budget": Translation(pt="• Aumentar um pouco o orçamento", en="• Increase the budget a little"),
    "suggest_older": Translation(
        pt="• Considerar veículos um pouco mais antigos", en="• Consider slightly older vehicles"
    ),
    "suggest_km": Translation(
        pt="• Aceitar veículos com mais quilometragem", en="• Accept vehicles with higher mileage"
    ),
    "suggest_body_type": Translation(
        pt="• Considerar outros tipos de carroceria", en="• Consider other body types"
    ),
    "suggest_brands": Translation(
        pt="• Considerar outras marcas ou modelos", en="• Consider other brands or models"
    ),
    "suggest_flex": Translation(
        pt="• Flexibilizar o ano ou quilometragem", en="• Be flexible on year or mileage"
    ),
    "err_empty_menu": Translation(
        pt="Por favor, digite *1*, *2* ou *3* (ou \"vendedor\" para falar com nossa equipe).",
        en="Please type *1*, *2* or *3* (or \"seller\" to talk to our team).",
    ),
    "broadening": Translation(
        pt="🔄 Certo! Vou ampliar os critérios da busca...",
        en="🔄 Sure! Broadening the search criteria...",
    ),
    "search_error": Translation(
        pt=(
            "Desculpe, houve um erro ao buscar veículos. Por favor, tente novamente "
            "ou digite *vendedor* para falar com nossa equipe."
        ),
        en="Sorry, something went wrong while searching. Please try again or type *seller* to talk to our team.",
    ),

    # --- Recommendations / follow-up ---
    "rec_header": Translation(
        pt="🎯 Encontrei {count} veículo{plural} perfeito{plural} para você!",
        en="🎯 I found {count} great vehicle{plural} for you!",
    ),
    "rec_footer": Translation(
        pt=(
            "📱 O que você gostaria de fazer?\n\n"
            "• Digite o número do carro para ver mais detalhes\n"
            "• Diga \"quero esse\" ou \"gostei do segundo\" para falar com um vendedor sobre ele\n"
            "• Digite \"agendar\" para marcar uma visita 📅\n"
            "• Digite \"vendedor\" para falar com nossa equipe"
        ),
        en=(
            "📱 What would you like to do?\n\n"
            "• Type the car number to see more details\n"
            "• Say \"I want this one\" or \"I like the second\" to talk to a seller about it\n"
            "• Type \"schedule\" to book a visit 📅\n"
            "• Type \"seller\" to talk to our team"
        ),
    ),
    "vehicle_not_found": Translation(
        pt="Não encontrei esse número na lista. Digite um número de 1 a {count}.",
        en="That number isn't on the list. Type a number from 1 to {count}.",
    ),
    "follow_up_prompt": Translation(
        pt="Como posso ajudar mais?\n\nDigite o número de um carro para ver detalhes ou \"vendedor\" para falar com nossa equipe.",
        en="How else can I help?\n\nType a car number for details or \"seller\" to talk to our team.",
    ),
    "llm_apology": Translation(
        pt=(
            "Desculpe, não consegui responder sua pergunta agora. 😔\n\n"
            "Digite *vendedor* e nossa equipe responde para você!"
        ),
        en="Sorry, I couldn't answer your question right now. 😔\n\nType *seller* and our team will reply!",
    ),

    # --- Lead capture ---
    "lead_confirmation": Translation(
        pt=(
            "✅ *Perfeito, {name}!*\n\n"
            "Registrei seu interesse no *{vehicle}*.\n\n"
            "📞 Um de nossos vendedores entrará em contato com você em breve para dar continuidade ao atendimento.\n\n"
            "Enquanto isso, você pode continuar explorando outros veículos ou tirar dúvidas comigo! 😊"
        ),
        en=(
            "✅ *Perfect, {name}!*\n\n"
            "I've registered your interest in the *{vehicle}*.\n\n"
            "📞 One of our sellers will contact you soon.\n\n"
            "Meanwhile, feel free to keep exploring other vehicles or ask me anything! 😊"
        ),
    ),
    "lead_already_captured": Translation(
        pt=(
            "👍 Seu interesse já foi registrado e nossa equipe vai falar com você em breve!\n\n"
            "Se quiser, continue tirando dúvidas sobre os veículos."
        ),
        en="👍 Your interest is already registered and our team will contact you soon!\n\nFeel free to keep asking about the vehicles.",
    ),

    # --- Handoff ---
    "handoff_requested": Translation(
        pt="Entendi! 👍\n\nVou conectar você com um de nossos vendedores especialistas.\n\nUm momento, por favor. ⏳",
        en="Got it! 👍\n\nI'll connect you with one of our specialist sellers.\n\nOne moment, please. ⏳",
    ),
    "handoff_ceiling": Translation(
        pt=(
            "Parece que não estou conseguindo te ajudar da melhor forma. 😕\n\n"
            "Vou chamar um de nossos vendedores para continuar o atendimento com você. "
            "Aguarde só um momento! 🤝"
        ),
        en=(
            "It looks like I'm not able to help you the best way. 😕\n\n"
            "I'll bring in one of our sellers to continue with you. Just a moment! 🤝"
        ),
    ),
    "handoff_waiting": Translation(
        pt="Um vendedor já foi avisado e vai falar com você em breve. 🤝",
        en="A seller has already been notified and will talk to you soon. 🤝",
    ),

    # --- Global commands ---
    "farewell": Translation(
        pt="Foi um prazer conversar com você! 👋\n\nQuando quiser voltar a procurar um carro, é só mandar um *oi*. Até logo! 🚗",
        en="It was a pleasure talking to you! 👋\n\nWhenever you want to look for a car again, just say *hi*. See you! 🚗",
    ),
    "restarted": Translation(
        pt="🔄 Tudo bem, vamos recomeçar!",
        en="🔄 All right, let's start over!",
    ),

    # --- Errors / degraded service ---
    "service_degraded": Translation(
        pt="Desculpe, estamos com uma instabilidade no momento. 😔 Por favor, tente novamente em instantes.",
        en="Sorry, we're experiencing some instability right now. 😔 Please try again shortly.",
    ),
    "output_blocked": Translation(
        pt=(
            "Desculpe, não consegui gerar uma resposta adequada. 😔\n\n"
            "Digite *vendedor* para falar com nossa equipe."
        ),
        en="Sorry, I couldn't produce a proper answer. 😔\n\nType *seller* to talk to our team.",
    ),

    # --- Data rights ---
    "privacy_confirm_delete": Translation(
        pt=(
            "⚠️ Você pediu para *excluir seus dados*.\n\n"
            "Isso apaga suas conversas e preferências e não pode ser desfeito.\n\n"
            "Confirma? Responda *SIM* para excluir ou *NÃO* para cancelar."
        ),
        en=(
            "⚠️ You asked to *delete your data*.\n\n"
            "This erases your conversations and preferences and cannot be undone.\n\n"
            "Confirm? Reply *YES* to delete or *NO* to cancel."
        ),
    ),
    "privacy_reconfirm": Translation(
        pt="Responda *SIM* para excluir seus dados ou *NÃO* para cancelar.",
        en="Reply *YES* to delete your data or *NO* to cancel.",
    ),
    "privacy_deleted": Translation(
        pt="✅ Seus dados foram excluídos. Se quiser voltar a conversar, é só mandar um *oi*.",
        en="✅ Your data has been deleted. If you want to talk again, just say *hi*.",
    ),
    "privacy_nothing_to_delete": Translation(
        pt="Não encontrei dados seus armazenados. Nada foi excluído.",
        en="I didn't find any stored data for you. Nothing was deleted.",
    ),
    "privacy_delete_cancelled": Translation(
        pt="👍 Tudo certo, seus dados foram mantidos.",
        en="👍 All right, your data was kept.",
    ),
    "privacy_export": Translation(
        pt=(
            "📄 *Seus dados armazenados:*\n\n"
            "• Conversas: {conversations}\n"
            "• Mensagens: {messages}\n"
            "• Nome informado: {name}\n"
            "• Preferências: {preferences}\n\n"
            "Para excluir tudo, digite *excluir meus dados*."
        ),
        en=(
            "📄 *Your stored data:*\n\n"
            "• Conversations: {conversations}\n"
            "• Messages: {messages}\n"
            "• Name given: {name}\n"
            "• Preferences: {preferences}\n\n"
            "To delete everything, type *delete my data*."
        ),
    ),
    "privacy_error": Translation(
        pt="Desculpe, não consegui processar seu pedido sobre dados agora. Tente novamente mais tarde.",
        en="Sorry, I couldn't process your data request right now. Please try again later.",
    ),
}


def get_text(key: str, lang: str = "pt", **fmt) -> str:
    """
    Get a translated text string.

    Args:
        key: Translation key (e.g. ``"greeting"``, ``"q_budget"``).
        lang: ``"pt"`` or ``"en"``.
        **fmt: ``str.format`` placeholders.

    Returns:
        Translated string, or *key* itself if no translation exists.
    """
    translation = TEXTS.get(key)
    if translation is None:
        return key
    text = translation.get(lang)
    return text.format(**fmt) if fmt else text
