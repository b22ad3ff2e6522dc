"""
AI concierge: menu-aware chat and cart upsell suggestions on top of an
OpenAI compatible chat completion API.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

import config
from models import MenuProduct, Product, UpsellCartItem, UpsellResponse

logger = logging.getLogger(__name__)

UPSELL_SYSTEM_PROMPT = """Tu es un serveur expert dans un restaurant haut de gamme en Afrique de l'Ouest (prix en FCFA).
Ta mission : suggérer UN SEUL produit complémentaire pertinent pour améliorer l'expérience client.

Règles strictes :
1. Suggère uniquement un produit qui complète bien la commande actuelle (par exemple : dessert après plat, boisson avec repas)
2. Reste concis : raison en maximum 8 mots
3. Sois naturel et chaleureux dans ton ton
4. Ne suggère JAMAIS un produit déjà dans le panier
5. Privilégie des suggestions logiques (éviter de suggérer 2 plats principaux par exemple)

Retourne UNIQUEMENT un objet JSON avec :
- suggestedProductId: string (ID du produit suggéré)
- shortReason: string (max 8 mots, ton chaleureux)

Exemple : { "suggestedProductId": "abc123", "shortReason": "Un dessert pour terminer en beauté ?" }"""

# keyword -> tag, matched against lower-cased descriptions
DIETARY_KEYWORDS = [
    (("végétarien", "vegetarien"), "vegetarian"),
    (("vegan", "végétalien"), "vegan"),
    (("sans gluten", "gluten-free"), "gluten-free"),
    (("halal",), "halal"),
    (("épicé", "pimenté", "piquant"), "spicy"),
    (("noix", "arachide"), "contains-nuts"),
    (("lactose", "lait"), "contains-dairy"),
]


class ChatCompletionError(Exception):
    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"chat completion failed ({status_code}): {detail[:200]}")


class UpsellError(Exception):
    """The model answered with something we cannot use."""


class ChatCompletionClient:
    def __init__(
        self,
        api_key: str = config.OPENAI_API_KEY,
        base_url: str = config.OPENAI_BASE,
        model: str = config.OPENAI_CHAT_MODEL,
        timeout: float = config.OPENAI_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.url = f"{base_url.rstrip('/')}/v1/chat/completions"
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your_openai_api_key_here"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def complete_json(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.8,
        max_tokens: int = 150,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }
        async with self._client() as client:
            r = await client.post(self.url, headers=self._headers(), json=payload)
            if r.is_error:
                raise ChatCompletionError(r.status_code, r.text)
            data = r.json()

        return (
            data.get("choices", [{}])[0]
            .get("message", {})
            .get("content", "")
            .strip()
        )

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """
        Start a streamed completion. Errors on the initial response are
        raised here, before any text is produced; the returned iterator
        yields the text deltas.
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        client = self._client()
        request = client.build_request("POST", self.url, headers=self._headers(), json=payload)
        try:
            response = await client.send(request, stream=True)
        except BaseException:
            await client.aclose()
            raise
        if response.is_error:
            body = (await response.aread()).decode("utf-8", "replace")
            await response.aclose()
            await client.aclose()
            raise ChatCompletionError(response.status_code, body)
        return _iter_deltas(client, response)


async def _iter_deltas(client: httpx.AsyncClient, response: httpx.Response) -> AsyncIterator[str]:
    try:
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                break
            chunk = json.loads(data)
            choices = chunk.get("choices") or [{}]
            delta = choices[0].get("delta", {}).get("content")
            if delta:
                yield delta
    finally:
        await response.aclose()
        await client.aclose()


# Prompt building

def extract_dietary_tags(description: str) -> List[str]:
    text = description.lower()
    return [tag for keywords, tag in DIETARY_KEYWORDS if any(k in text for k in keywords)]


def format_menu_for_ai(products: List[Product]) -> str:
    menu = [
        {
            "id": p.id,
            "name": p.name,
            "description": p.description or "Pas de description disponible",
            "price": p.price,
            "category": p.categoryId,
            "available": p.isAvailable,
            "tags": extract_dietary_tags(p.description or ""),
        }
        for p in products
    ]
    return json.dumps(menu, ensure_ascii=False, indent=2)


def build_system_prompt(restaurant_name: str, menu_json: str) -> str:
    return f"""Tu es le serveur expert et chaleureux du restaurant "{restaurant_name}".
Ton rôle est d'aider les clients à choisir des plats et d'augmenter le ticket moyen avec des suggestions pertinentes.

MENU DISPONIBLE (JSON):
{menu_json}

RÈGLES STRICTES:
1. Ne suggère QUE des plats présents dans le menu ci-dessus
2. Sois bref (max 2-3 phrases), chaleureux et appétissant
3. Utilise des émojis pour rendre tes réponses plus visuelles (🍷🍕🥗)
4. Si le client choisit un plat, propose TOUJOURS une boisson ou un accompagnement qui va avec (Upselling subtil)
5. Si le client mentionne une allergie ou restriction alimentaire, vérifie STRICTEMENT les descriptions et tags
6. Si un plat n'est pas disponible (available: false), ne le suggère pas
7. Donne des conseils sur les tailles de portions et les cuissons quand pertinent
8. Mentionne les spécialités du chef ou les recommandations de la maison

OBJECTIF: Être serviable, augmenter le panier, et créer une expérience mémorable."""


def quick_suggestions() -> List[str]:
    return [
        "🍷 Quel vin avec le bœuf ?",
        "🌶️ C'est quoi le plat le plus épicé ?",
        "🥗 J'ai très faim mais je suis végétarien",
        "🔥 Quelle est la spécialité du chef ?",
        "💰 Un menu à moins de 20€ ?",
        "🥤 Quelle boisson avec les pâtes ?",
    ]


def format_price(amount: int) -> str:
    return f"{amount:,}".replace(",", " ")


# Upsell

async def suggest_upsell(
    client: ChatCompletionClient,
    cart_items: List[UpsellCartItem],
    menu_context: List[MenuProduct],
) -> Optional[UpsellResponse]:
    """
    Ask the model for one product to add to the cart.

    Returns None when every menu product is already in the cart. The
    suggested id must exist in ``menu_context`` or UpsellError is raised.
    """
    in_cart = {item.productId for item in cart_items}
    available = [
        {
            "id": p.id,
            "name": p.name,
            "description": p.description,
            "price": format_price(p.price),
            "tags": ", ".join(p.aiTags),
        }
        for p in menu_context if p.id not in in_cart
    ]
    if not available:
        logger.info("⚠️ No products available for suggestion")
        return None

    cart_summary = ", ".join(
        f"{item.productName} (x{item.quantity}) - {format_price(item.unitPrice)} {config.DEFAULT_CURRENCY}"
        for item in cart_items
    )
    logger.info("📊 Analyzing %d cart items against %d available products", len(cart_items), len(available))

    messages = [
        {"role": "system", "content": UPSELL_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Panier actuel : {cart_summary}\n\n"
                f"Produits disponibles :\n{json.dumps(available, ensure_ascii=False, indent=2)}\n\n"
                "Suggère un produit complémentaire pertinent."
            ),
        },
    ]
    raw = await client.complete_json(messages)
    if not raw:
        raise UpsellError("AI response failed")

    try:
        suggestion: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise UpsellError(f"Invalid AI response format: {e}")
    if not isinstance(suggestion, dict) or not suggestion.get("suggestedProductId") or not suggestion.get("shortReason"):
        raise UpsellError("Invalid AI response format")

    product_id = str(suggestion["suggestedProductId"])
    product = next((p for p in menu_context if p.id == product_id), None)
    if product is None:
        raise UpsellError(f"Suggested product not found: {product_id}")

    logger.info("✅ Suggestion: %s - %r", product.name, suggestion["shortReason"])
    return UpsellResponse(suggestedProductId=product_id, shortReason=str(suggestion["shortReason"]))
