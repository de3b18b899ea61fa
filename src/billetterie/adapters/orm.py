"""
Mapping ORM avec SQLAlchemy (classical mapping).

On définit les tables séparément, puis on mappe les classes
du domaine sur ces tables. Le modèle de domaine reste ignorant
de la persistance.

Les noms de colonnes SQL restent en ASCII, le mapping traduit vers
les attributs français du domaine. Les colonnes numero_version servent
de compteur de version (verrouillage optimiste) : une écriture qui
part d'une version périmée échoue avec StaleDataError.
"""

from datetime import timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Interval,
    MetaData,
    Numeric,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import registry, relationship

from billetterie.domain import inventory, model

metadata = MetaData()
mapper_registry = registry(metadata=metadata)


class DateHeureUTC(TypeDecorator):
    """Stocke des dates UTC naïves, les restitue avec le fuseau UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return model.en_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


# --- Définition des tables ---

evenements = Table(
    "evenements",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("titre", String(255), nullable=False),
    Column("type", Enum(model.TypeÉvénement, name="type_evenement"), nullable=False),
    Column("debut", DateHeureUTC, nullable=False),
    Column("duree", Interval, nullable=False),
    Column("etat", Enum(model.ÉtatÉvénement, name="etat_evenement"), nullable=False),
    Column("annule", Boolean, nullable=False, default=False),
    Column("numero_version", Integer, nullable=False, server_default="0"),
)

categories = Table(
    "categories",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("evenement_id", String(64), ForeignKey("evenements.id"), nullable=False),
    Column("libelle", Enum(inventory.CatégorieTicket, name="categorie_ticket"), nullable=False),
    Column("ordre", Integer, nullable=False, default=0),
    Column("prix_unitaire", Numeric(10, 2), nullable=False),
    Column("capacite", Integer, nullable=False),
    Column("numero_version", Integer, nullable=False, server_default="0"),
)

blocages = Table(
    "blocages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("categorie_id", String(64), ForeignKey("categories.id"), nullable=False),
    Column("reference", String(64), nullable=False),
    Column("quantite", Integer, nullable=False),
    Column("statut", Enum(inventory.StatutBlocage, name="statut_blocage"), nullable=False),
    Column("expire_le", DateHeureUTC, nullable=False),
    UniqueConstraint("categorie_id", "reference"),
)

reservations = Table(
    "reservations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("client_id", String(64), nullable=False, index=True),
    Column("evenement_id", String(64), ForeignKey("evenements.id"), nullable=False, index=True),
    Column("categorie_id", String(64), ForeignKey("categories.id"), nullable=False),
    Column("quantite", Integer, nullable=False),
    Column("statut", Enum(model.StatutRéservation, name="statut_reservation"), nullable=False),
    Column("cree_le", DateHeureUTC, nullable=False),
    Column("annulee_le", DateHeureUTC, nullable=True),
    Column("numero_version", Integer, nullable=False, server_default="0"),
)

paiements = Table(
    "paiements",
    metadata,
    Column("id", String(80), primary_key=True),
    Column("reservation_id", String(64), ForeignKey("reservations.id"), nullable=False, unique=True),
    Column("montant", Numeric(10, 2), nullable=False),
    Column("statut", Enum(model.StatutPaiement, name="statut_paiement"), nullable=False),
    Column("methode", Enum(model.MéthodePaiement, name="methode_paiement"), nullable=True),
    Column("reference_transaction", String(255), nullable=True),
    Column("tentatives", Integer, nullable=False, default=0),
    Column("remboursement_en_attente", Boolean, nullable=False, default=False),
    Column("motif_echec", String(255), nullable=True),
    Column("paye_le", DateHeureUTC, nullable=True),
    Column("rembourse_le", DateHeureUTC, nullable=True),
)

_mappers_démarrés = False


def start_mappers() -> None:
    """
    Configure le mapping entre les classes du domaine et les tables SQL.

    Peut être appelée plusieurs fois : seul le premier appel mappe les classes.
    """
    global _mappers_démarrés
    if _mappers_démarrés:
        return

    blocages_mapper = mapper_registry.map_imperatively(
        inventory.Blocage,
        blocages,
        properties={
            "référence": blocages.c.reference,
            "quantité": blocages.c.quantite,
        },
    )
    catégories_mapper = mapper_registry.map_imperatively(
        inventory.CatégorieBillets,
        categories,
        properties={
            "événement_id": categories.c.evenement_id,
            "libellé": categories.c.libelle,
            "capacité": categories.c.capacite,
            "numéro_version": categories.c.numero_version,
            "_blocages": relationship(
                blocages_mapper,
                cascade="all, delete-orphan",
                order_by=blocages.c.id,
                lazy="selectin",
            ),
        },
        version_id_col=categories.c.numero_version,
        version_id_generator=False,
    )
    mapper_registry.map_imperatively(
        model.Événement,
        evenements,
        properties={
            "début": evenements.c.debut,
            "durée": evenements.c.duree,
            "état": evenements.c.etat,
            "annulé": evenements.c.annule,
            "numéro_version": evenements.c.numero_version,
            "catégories": relationship(
                catégories_mapper,
                cascade="all, delete-orphan",
                order_by=categories.c.ordre,
                lazy="selectin",
            ),
        },
        version_id_col=evenements.c.numero_version,
        version_id_generator=False,
    )
    paiements_mapper = mapper_registry.map_imperatively(
        model.Paiement,
        paiements,
        properties={
            "réservation_id": paiements.c.reservation_id,
            "méthode": paiements.c.methode,
            "référence_transaction": paiements.c.reference_transaction,
            "motif_échec": paiements.c.motif_echec,
            "payé_le": paiements.c.paye_le,
            "remboursé_le": paiements.c.rembourse_le,
        },
    )
    mapper_registry.map_imperatively(
        model.Réservation,
        reservations,
        properties={
            "événement_id": reservations.c.evenement_id,
            "catégorie_id": reservations.c.categorie_id,
            "quantité": reservations.c.quantite,
            "créée_le": reservations.c.cree_le,
            "annulée_le": reservations.c.annulee_le,
            "numéro_version": reservations.c.numero_version,
            "paiement": relationship(
                paiements_mapper,
                uselist=False,
                cascade="all, delete-orphan",
                lazy="joined",
            ),
        },
        version_id_col=reservations.c.numero_version,
        version_id_generator=False,
    )
    _mappers_démarrés = True


@event.listens_for(model.Événement, "load")
def receive_load_événement(événement: model.Événement, _: object) -> None:
    """Initialise la liste de faits quand un Événement est chargé depuis la BDD."""
    événement.faits = []


@event.listens_for(model.Réservation, "load")
def receive_load_réservation(réservation: model.Réservation, _: object) -> None:
    réservation.faits = []
