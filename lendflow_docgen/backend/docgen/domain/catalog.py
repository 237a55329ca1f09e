# backend/docgen/domain/catalog.py
"""
Static document catalogs.

Everything the pipeline needs to know about a document type lives here as
data: which module generates it and in what order, whether it needs AI
prose, which prose sections it must contain, and whether its numeric terms
are rendered by the template. Adding a document type is a table edit.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .project_context import DocumentInput


MODULES = ("lending", "ma", "syndication", "capital", "compliance")


class FailurePolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    FAIL_ISOLATED = "fail_isolated"


@dataclass(frozen=True)
class ModulePipelineConfig:
    module: str
    doc_types: tuple[str, ...]
    failure_policy: FailurePolicy


# -------------------- ordered doc lists --------------------

LENDING_DOC_TYPES: tuple[str, ...] = (
    "commitment_letter",
    "promissory_note",
    "loan_agreement",
    "security_agreement",
    "guaranty",
    "deed_of_trust",
    "environmental_indemnity",
    "assignment_of_leases",
    "subordination_agreement",
    "intercreditor_agreement",
    "corporate_resolution",
    "ucc_financing_statement",
    "snda",
    "estoppel_certificate",
    "borrowers_certificate",
    "opinion_letter",
    "settlement_statement",
    "amortization_schedule",
    "compliance_certificate",
    "flood_determination",
    "privacy_notice",
    "patriot_act_notice",
    "disbursement_authorization",
)

MA_DOC_TYPES: tuple[str, ...] = (
    "loi",
    "nda",
    "purchase_agreement",
    "due_diligence_checklist",
    "disclosure_schedules",
    "closing_checklist",
)

SYNDICATION_DOC_TYPES: tuple[str, ...] = (
    "ppm",
    "operating_agreement",
    "subscription_agreement",
    "investor_questionnaire",
    "pro_forma",
)

CAPITAL_DOC_TYPES: tuple[str, ...] = (
    "ppm",
    "subscription_agreement",
    "operating_agreement",
    "investor_questionnaire",
    "side_letter",
    "form_d_draft",
)

COMPLIANCE_DOC_TYPES: tuple[str, ...] = (
    "lp_quarterly_report",
    "capital_call_notice",
    "distribution_notice",
    "k1_summary",
    "annual_report",
    "form_adv_summary",
)

# Lending and M&A keep going past a bad document: a loan package or deal
# binder with one placeholder is still reviewable. Offering and fund
# reporting packages are internally cross-referenced (PPM <-> subscription
# <-> operating agreement; notices <-> quarterly report), so a hole makes
# the rest unusable and the run stops at the first failure.
PIPELINES: dict[str, ModulePipelineConfig] = {
    "lending": ModulePipelineConfig("lending", LENDING_DOC_TYPES, FailurePolicy.FAIL_ISOLATED),
    "ma": ModulePipelineConfig("ma", MA_DOC_TYPES, FailurePolicy.FAIL_ISOLATED),
    "syndication": ModulePipelineConfig("syndication", SYNDICATION_DOC_TYPES, FailurePolicy.FAIL_FAST),
    "capital": ModulePipelineConfig("capital", CAPITAL_DOC_TYPES, FailurePolicy.FAIL_FAST),
    "compliance": ModulePipelineConfig("compliance", COMPLIANCE_DOC_TYPES, FailurePolicy.FAIL_FAST),
}


# -------------------- deterministic vs AI --------------------

ZERO_AI_DOC_TYPES: dict[str, frozenset[str]] = {
    "lending": frozenset({
        "settlement_statement",
        "amortization_schedule",
        "compliance_certificate",
        "flood_determination",
        "privacy_notice",
        "patriot_act_notice",
        "disbursement_authorization",
    }),
    "ma": frozenset({"due_diligence_checklist", "closing_checklist"}),
    "syndication": frozenset({"pro_forma"}),
    "capital": frozenset(),
    "compliance": frozenset({"k1_summary"}),
}

# Doc types whose amount / rate / term / fee figures are rendered by the
# template, never by the model. Prose for these is not expected to repeat them.
TEMPLATE_HANDLED_TYPES: frozenset[str] = frozenset(LENDING_DOC_TYPES)


# -------------------- required prose sections --------------------

REQUIRED_PROSE_KEYS: dict[str, dict[str, tuple[str, ...]]] = {
    "lending": {
        "commitment_letter": (
            "openingParagraph", "conditionsPrecedent", "representationsRequired",
            "expirationClause", "governingLaw",
        ),
        "promissory_note": (
            "defaultProvisions", "accelerationClause", "lateFeeProvision",
            "waiverProvisions", "governingLawClause", "miscellaneousProvisions",
        ),
        "loan_agreement": (
            "recitals", "representations", "eventsOfDefault",
            "remediesOnDefault", "waiverAndAmendment", "noticeProvisions",
            "miscellaneous", "governingLaw",
        ),
        "security_agreement": (
            "collateralDescription", "perfectionLanguage", "representationsAndWarranties",
            "remediesOnDefault", "dispositionOfCollateral", "governingLaw",
        ),
        "guaranty": (
            "guarantyScope", "waiverOfDefenses", "subrogationWaiver",
            "subordination", "miscellaneous", "governingLaw",
        ),
        "deed_of_trust": (
            "grantClause", "borrowerCovenants", "defaultProvisions",
            "powerOfSale", "environmentalCovenants", "governingLaw",
        ),
        "environmental_indemnity": (
            "indemnificationScope", "representationsAndWarranties", "covenants",
            "remediationObligations", "survivalClause", "governingLaw",
        ),
        "assignment_of_leases": (
            "assignmentGrant", "representationsAndWarranties", "covenants",
            "lenderRights", "tenantNotification", "governingLaw",
        ),
        "subordination_agreement": (
            "subordinationTerms", "seniorDebtDescription", "subordinateDebtDescription",
            "paymentRestrictions", "standstillProvisions", "turnoverProvisions", "governingLaw",
        ),
        "intercreditor_agreement": (
            "definitionsAndInterpretation", "lienPriority", "paymentWaterfall",
            "standstillAndCure", "enforcementRights", "purchaseOption",
            "releaseAndAmendment", "bankruptcyProvisions", "governingLaw",
        ),
        "corporate_resolution": (
            "resolutionRecitals", "authorizationClause", "authorizedSigners",
            "ratificationClause", "certificateOfSecretary", "governingLaw",
        ),
        "ucc_financing_statement": (
            "collateralDescription", "proceedsClause", "filingInstructions", "additionalProvisions",
        ),
        "snda": (
            "subordinationTerms", "nonDisturbanceTerms", "attornmentTerms", "lenderProtections", "governingLaw",
        ),
        "estoppel_certificate": ("additionalCertifications",),
        "borrowers_certificate": ("additionalCertifications", "governingLaw"),
        "opinion_letter": ("additionalOpinions", "governingLaw"),
    },
    "ma": {
        "loi": (
            "openingParagraph", "purchasePriceProvision", "structureDescription",
            "dueDiligenceScope", "closingConditions", "exclusivityProvision",
            "confidentialityProvision", "expenseAllocation", "bindingNonBindingStatement", "governingLaw",
        ),
        "nda": (
            "confidentialInfoDefinition", "permittedUse", "permittedDisclosures",
            "termAndDuration", "nonSolicitation", "standstillProvision",
            "residualKnowledge", "remedies", "returnOfMaterials", "governingLaw",
        ),
        "purchase_agreement": (
            "recitals", "purchaseAndSale", "considerationProvisions", "workingCapitalAdjustment",
            "sellerRepresentations", "buyerRepresentations", "preClosingCovenants",
            "postClosingCovenants", "closingConditions", "indemnificationProvisions",
            "terminationProvisions", "nonCompeteProvision", "miscellaneous", "governingLaw",
        ),
        "disclosure_schedules": (
            "generalDisclosureProvision", "capitalizationSchedule", "subsidiariesSchedule",
            "materialContractsSchedule", "litigationSchedule", "ipSchedule",
            "realPropertySchedule", "environmentalSchedule", "taxSchedule",
            "insuranceSchedule", "employeesSchedule",
        ),
    },
    "syndication": {
        "ppm": (
            "secLegend", "executiveSummary", "riskFactors", "propertyDescription",
            "marketAnalysis", "businessPlan", "sponsorInformation", "taxConsiderations",
        ),
        "operating_agreement": (
            "recitals", "purposeAndBusiness", "capitalContributions", "distributionWaterfall",
            "managementPowers", "feeProvisions", "reportingObligations", "transferRestrictions",
        ),
        "subscription_agreement": (
            "recitals", "investorRepresentations", "accreditedStatusReps", "capitalCallProvisions",
            "suitabilityRepresentations", "indemnification", "miscellaneous", "governingLaw",
        ),
        "investor_questionnaire": (
            "introduction", "accreditedIndividualCriteria", "accreditedEntityCriteria",
            "verificationMethods506b", "verificationMethods506c", "incomeVerification",
            "netWorthVerification", "professionalVerification",
        ),
    },
    "capital": {
        "ppm": (
            "secLegend", "summaryOfTerms", "riskFactors", "useOfProceeds",
            "managementBios", "investmentStrategy", "termsOfOffering", "conflictsOfInterest",
        ),
        "subscription_agreement": (
            "recitals", "investorRepresentations", "suitabilityRepresentations", "erisaRepresentations",
            "taxRepresentations", "amlKycRepresentations", "accreditationCertification", "verificationSection",
        ),
        "operating_agreement": (
            "recitals", "formationAndPurpose", "capitalContributions", "capitalAccounts",
            "distributionWaterfall", "managementFeeProvisions", "clawbackProvision", "keyPersonProvision",
        ),
        "investor_questionnaire": (
            "introduction", "accreditedIndividualCriteria", "accreditedEntityCriteria",
            "qualifiedPurchaserCriteria", "verificationInstructions", "incomeVerification",
            "netWorthVerification", "professionalVerification",
        ),
        "side_letter": (
            "recitals", "mfnProvision", "feeDiscount", "coInvestmentRights",
            "enhancedReporting", "excuseRights", "keyPersonModifications", "transferRights",
        ),
        "form_d_draft": (
            "issuerDescription", "offeringDescription", "useOfProceeds",
            "salesCompensation", "relatedPersonsDescription", "additionalNotes",
        ),
    },
    "compliance": {
        "lp_quarterly_report": (
            "fundOverviewNarrative", "marketCommentary", "portfolioHighlights",
            "feeAndExpenseDisclosure", "gpCommitmentStatus", "outlook",
        ),
        "capital_call_notice": (
            "callNarrative", "purposeDescription", "wireInstructions", "defaultProvisionsNarrative",
        ),
        "distribution_notice": (
            "distributionNarrative", "waterfallExplanation", "taxWithholdingExplanation",
        ),
        "annual_report": (
            "letterToInvestors", "fundPerformanceNarrative", "portfolioReview",
            "valuationMethodology", "auditStatement",
        ),
        "form_adv_summary": (
            "advisoryBusiness", "feesAndCompensation", "conflictsOfInterest", "disciplinaryInformation",
        ),
    },
}

# Sections the model returns as lists of clauses rather than a single block.
ARRAY_PROSE_KEYS: frozenset[str] = frozenset({
    "conditionsPrecedent", "representationsAndWarranties", "covenants", "representations",
    "eventsOfDefault", "borrowerCovenants", "waiverOfDefenses",
    "dueDiligenceScope", "closingConditions", "sellerRepresentations", "buyerRepresentations",
    "preClosingCovenants", "postClosingCovenants", "riskFactors", "investorRepresentations",
    "suitabilityRepresentations", "accreditedIndividualCriteria", "accreditedEntityCriteria",
    "qualifiedPurchaserCriteria",
})


DOC_TYPE_LABELS: dict[str, str] = {
    "commitment_letter": "Commitment Letter",
    "promissory_note": "Promissory Note",
    "loan_agreement": "Loan Agreement",
    "security_agreement": "Security Agreement",
    "guaranty": "Guaranty Agreement",
    "deed_of_trust": "Deed of Trust",
    "environmental_indemnity": "Environmental Indemnity Agreement",
    "assignment_of_leases": "Assignment of Leases and Rents",
    "subordination_agreement": "Subordination Agreement",
    "intercreditor_agreement": "Intercreditor Agreement",
    "corporate_resolution": "Corporate Borrowing Resolution",
    "ucc_financing_statement": "UCC-1 Financing Statement",
    "snda": "Subordination, Non-Disturbance and Attornment Agreement",
    "estoppel_certificate": "Tenant Estoppel Certificate",
    "borrowers_certificate": "Borrower's Certificate",
    "opinion_letter": "Legal Opinion Letter",
    "settlement_statement": "Settlement Statement",
    "amortization_schedule": "Amortization Schedule",
    "compliance_certificate": "Compliance Certificate",
    "flood_determination": "Flood Hazard Determination",
    "privacy_notice": "Privacy Notice",
    "patriot_act_notice": "USA PATRIOT Act Notice",
    "disbursement_authorization": "Disbursement Authorization",
    "loi": "Letter of Intent / Term Sheet",
    "nda": "Non-Disclosure Agreement",
    "purchase_agreement": "Purchase Agreement",
    "stock_purchase_agreement": "Stock Purchase Agreement",
    "asset_purchase_agreement": "Asset Purchase Agreement",
    "merger_agreement": "Merger Agreement",
    "due_diligence_checklist": "Due Diligence Checklist",
    "disclosure_schedules": "Disclosure Schedules",
    "closing_checklist": "Closing Checklist",
    "ppm": "Private Placement Memorandum",
    "operating_agreement": "Operating Agreement",
    "subscription_agreement": "Subscription Agreement",
    "investor_questionnaire": "Investor Questionnaire",
    "pro_forma": "Pro Forma Financial Projections",
    "side_letter": "Side Letter",
    "form_d_draft": "Form D (Draft)",
    "lp_quarterly_report": "LP Quarterly Report",
    "capital_call_notice": "Capital Call Notice",
    "distribution_notice": "Distribution Notice",
    "k1_summary": "Schedule K-1 Summary",
    "annual_report": "Annual Report",
    "form_adv_summary": "Form ADV Summary",
}

# purchase_agreement renders as whichever agreement the deal structure calls for
_MA_PURCHASE_AGREEMENT_BY_TRANSACTION = {
    "stock_purchase": "stock_purchase_agreement",
    "asset_purchase": "asset_purchase_agreement",
    "merger": "merger_agreement",
    "forward_merger": "merger_agreement",
    "reverse_triangular_merger": "merger_agreement",
}

_REAL_PROPERTY_MARKERS = ("real_estate", "real estate", "residential", "commercial_real_estate")


# -------------------- lookups --------------------

def pipeline_config(module: str) -> ModulePipelineConfig:
    try:
        return PIPELINES[module]
    except KeyError:
        raise ValueError(f"unknown module: {module}") from None


def doc_type_label(doc_type: str) -> str:
    return DOC_TYPE_LABELS.get(doc_type, doc_type.replace("_", " ").title())


def is_ai_doc(module: str, doc_type: str) -> bool:
    return doc_type not in ZERO_AI_DOC_TYPES.get(module, frozenset())


def is_template_handled(doc_type: str) -> bool:
    return doc_type in TEMPLATE_HANDLED_TYPES


def required_prose_keys(module: str, doc_type: str) -> tuple[str, ...]:
    return REQUIRED_PROSE_KEYS.get(module, {}).get(doc_type, ())


def resolve_doc_type(module: str, doc_type: str, transaction_type: str | None) -> str:
    if module == "ma" and doc_type == "purchase_agreement" and transaction_type:
        return _MA_PURCHASE_AGREEMENT_BY_TRANSACTION.get(transaction_type.lower(), doc_type)
    return doc_type


def has_real_property(inp: "DocumentInput") -> bool:
    if inp.property_address:
        return True
    for t in inp.collateral_types:
        lower = t.lower()
        if lower == "real property" or any(m in lower for m in _REAL_PROPERTY_MARKERS):
            return True
    return False


def filter_doc_types(inp: "DocumentInput") -> list[str]:
    """
    Ordered doc list for this project after deal-context skips.
    Only the lending catalog is conditional; other modules always
    generate their full list.
    """
    cfg = pipeline_config(inp.module)
    if inp.module != "lending":
        return list(cfg.doc_types)

    real_property = has_real_property(inp)
    out: list[str] = []
    for doc_type in cfg.doc_types:
        if doc_type == "guaranty" and not inp.terms.personal_guaranty:
            continue
        if doc_type in {
            "deed_of_trust", "environmental_indemnity", "assignment_of_leases",
            "flood_determination", "snda", "estoppel_certificate",
        } and not real_property:
            continue
        if doc_type == "subordination_agreement" and not inp.subordinate_creditor_name:
            continue
        if doc_type == "intercreditor_agreement" and not inp.second_lien_lender_name:
            continue
        if doc_type == "compliance_certificate" and not inp.terms.covenants:
            continue
        out.append(doc_type)
    return out
