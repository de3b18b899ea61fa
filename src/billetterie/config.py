"""
Configuration de la billetterie.

Les paramètres sont lus une seule fois au démarrage (variables
d'environnement préfixées BILLETTERIE_, ou fichier .env), puis
transmis explicitement aux composants par le bootstrap.
Il n'y a pas d'instance globale.

Exemples :
    BILLETTERIE_DATABASE_URI=postgresql://...
    BILLETTERIE_DELAI_ANNULATION=PT48H
    BILLETTERIE_STRIPE__CLE_SECRETE=sk_test_...
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CLE_STRIPE_EXEMPLE = "sk_test_YOUR_SECRET_KEY_HERE"


class ParamètresStripe(BaseModel):
    """Identifiants et mode de la passerelle Stripe."""

    model_config = {"frozen": True}

    cle_secrete: str = ""
    mode_test: bool = True
    moyen_de_paiement_test: str = "pm_card_visa"

    @property
    def est_configuree(self) -> bool:
        """Vrai si une vraie clé secrète a été fournie."""
        return bool(self.cle_secrete) and self.cle_secrete != CLE_STRIPE_EXEMPLE


class Paramètres(BaseSettings):
    database_uri: str = "sqlite:///billetterie.db"

    # Politique métier
    delai_annulation: timedelta = timedelta(hours=24)
    duree_blocage: timedelta = timedelta(minutes=15)
    fermeture_reservations: timedelta = timedelta(minutes=30)
    max_billets_par_reservation: int = Field(default=10, gt=0)
    devise: str = "eur"

    stripe: ParamètresStripe = Field(default_factory=ParamètresStripe)

    model_config = SettingsConfigDict(
        env_prefix="BILLETTERIE_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )
