from datetime import date

# -----------------------------
# Construction phases (canonical execution order)
# -----------------------------
PHASE_ORDER = [
    "site_setup",
    "demolition",
    "earthworks",
    "foundations",
    "structure",
    "external_walls",
    "roof",
    "waterproofing",
    "external_frames",
    "rough_in_plumbing",
    "rough_in_electrical",
    "rough_in_gas",
    "rough_in_telecom",
    "rough_in_hvac",
    "internal_walls",
    "insulation",
    "external_finishes",
    "internal_finishes",
    "flooring",
    "ceilings",
    "carpentry",
    "plumbing_fixtures",
    "electrical_fixtures",
    "painting",
    "metalwork",
    "fire_safety",
    "elevators",
    "external_works",
    "testing",
    "cleanup",
]

PHASE_NAMES = {
    "site_setup": "Estaleiro e Trabalhos Preparatórios",
    "demolition": "Demolições",
    "earthworks": "Movimento de Terras",
    "foundations": "Fundações",
    "structure": "Estrutura",
    "external_walls": "Alvenarias Exteriores",
    "roof": "Cobertura",
    "waterproofing": "Impermeabilizações",
    "external_frames": "Caixilharias Exteriores",
    "rough_in_plumbing": "Redes de Águas e Drenagem (1ª fase)",
    "rough_in_electrical": "Instalações Elétricas (1ª fase)",
    "rough_in_gas": "Instalação de Gás",
    "rough_in_telecom": "ITED / ITUR",
    "rough_in_hvac": "AVAC e Ventilação (1ª fase)",
    "internal_walls": "Alvenarias Interiores",
    "insulation": "Isolamentos",
    "external_finishes": "Revestimentos Exteriores",
    "internal_finishes": "Revestimentos Interiores",
    "flooring": "Pavimentos",
    "ceilings": "Tetos Falsos",
    "carpentry": "Carpintarias",
    "plumbing_fixtures": "Loiças Sanitárias e Torneiras",
    "electrical_fixtures": "Aparelhagem Elétrica e Quadros",
    "painting": "Pinturas",
    "metalwork": "Serralharias",
    "fire_safety": "Segurança Contra Incêndio",
    "elevators": "Ascensores",
    "external_works": "Arranjos Exteriores",
    "testing": "Ensaios e Certificações",
    "cleanup": "Limpeza Final e Entrega",
}

# ProNIC chapter code -> phase
CHAPTER_PHASES = {
    "01": "site_setup",
    "02": "demolition",
    "03": "earthworks",
    "04": "foundations",
    "05": "foundations",       # contenções e muros de suporte
    "06": "structure",         # betão armado
    "07": "structure",         # estruturas metálicas
    "08": "external_walls",
    "09": "roof",
    "10": "waterproofing",
    "11": "external_finishes",
    "12": "internal_finishes",
    "13": "flooring",
    "14": "ceilings",
    "15": "external_frames",
    "16": "metalwork",
    "17": "carpentry",
    "18": "external_frames",   # vidros e espelhos
    "19": "painting",
    "20": "rough_in_plumbing",
    "21": "rough_in_plumbing",
    "22": "rough_in_gas",
    "23": "rough_in_electrical",
    "24": "rough_in_telecom",
    "25": "rough_in_hvac",
    "26": "elevators",
    "27": "fire_safety",
    "28": "insulation",
    "29": "external_works",
    "30": "testing",
}
DEFAULT_PHASE = "site_setup"

# Minimum working days between phases that must not overlap (curing, drying)
PHASE_GAPS = {
    ("structure", "waterproofing"): 7,
    ("waterproofing", "external_finishes"): 2,
    ("waterproofing", "internal_finishes"): 2,
    ("internal_finishes", "flooring"): 2,
    ("internal_finishes", "painting"): 3,
    ("ceilings", "painting"): 1,
}

# -----------------------------
# Labour
# -----------------------------
HOURS_PER_DAY = 8

# Trade -> hourly rate (EUR) and the phases it leads
LABOR_ROLES = {
    "pedreiro": {"name": "Pedreiro", "rate": 14,
                 "phases": ["foundations", "structure", "external_walls", "internal_walls",
                            "external_finishes", "internal_finishes", "flooring"]},
    "servente": {"name": "Servente", "rate": 10,
                 "phases": ["site_setup", "demolition", "earthworks", "cleanup"]},
    "carpinteiro": {"name": "Carpinteiro", "rate": 15,
                    "phases": ["roof", "carpentry", "external_frames"]},
    "canalizador": {"name": "Canalizador", "rate": 16,
                    "phases": ["rough_in_plumbing", "plumbing_fixtures", "rough_in_gas"]},
    "eletricista": {"name": "Eletricista", "rate": 16,
                    "phases": ["rough_in_electrical", "electrical_fixtures", "rough_in_telecom",
                               "fire_safety"]},
    "serralheiro": {"name": "Serralheiro", "rate": 15, "phases": ["metalwork"]},
    "pintor": {"name": "Pintor", "rate": 13, "phases": ["painting"]},
    "ladrilhador": {"name": "Ladrilhador", "rate": 15, "phases": ["ceilings"]},
    "impermeabilizador": {"name": "Impermeabilizador", "rate": 15,
                          "phases": ["waterproofing", "insulation"]},
    "tecnico_avac": {"name": "Técnico AVAC", "rate": 18, "phases": ["rough_in_hvac"]},
}
DEFAULT_ROLE = {"name": "Operário", "rate": 12}

# Crew budget by total project budget (EUR), director de obra included
BUDGET_BRACKETS = [
    (500_000, 6, "< 500K €"),
    (1_500_000, 10, "500K – 1.5M €"),
    (5_000_000, 20, "1.5M – 5M €"),
    (float("inf"), 40, "> 5M €"),
]

# -----------------------------
# Floors, procurement, milestones
# -----------------------------
FLOOR_STAGGER_PHASES = ["structure", "external_walls", "internal_walls", "flooring", "ceilings"]
FLOOR_STAGGER_LAG = 5

PROCUREMENT_LEAD_TIMES = {
    "structure": {"name": "Encomenda: Aço estrutural", "days": 20},
    "external_frames": {"name": "Encomenda: Caixilharias", "days": 35},
    "elevators": {"name": "Encomenda: Elevadores", "days": 75},
    "roof": {"name": "Encomenda: Cobertura", "days": 15},
    "fire_safety": {"name": "Encomenda: Sistema incêndio", "days": 25},
    "rough_in_hvac": {"name": "Encomenda: Equipamento AVAC", "days": 30},
}

MILESTONES = [
    {"name": "Marco: Consignação de Obra", "after_phase": "site_setup"},
    {"name": "Marco: Vistoria Estrutural", "after_phase": "structure"},
    {"name": "Marco: Fecho de Envolvente", "after_phase": "external_frames"},
    {"name": "Marco: Vistoria Final", "after_phase": "testing"},
    {"name": "Marco: Receção Provisória", "after_phase": "cleanup"},
]

# -----------------------------
# Calendar
# -----------------------------

# (month, day)
FIXED_HOLIDAYS = [
    (1, 1),    # Ano Novo
    (4, 25),   # Dia da Liberdade
    (5, 1),    # Dia do Trabalhador
    (6, 10),   # Dia de Portugal
    (8, 15),   # Assunção de Nossa Senhora
    (10, 5),   # Implantação da República
    (11, 1),   # Todos os Santos
    (12, 1),   # Restauração da Independência
    (12, 8),   # Imaculada Conceição
    (12, 25),  # Natal
]
GOOD_FRIDAY_OFFSET = -2
CORPUS_CHRISTI_OFFSET = 60

# Municipal holidays callers may add through ScheduleOptions.extra_holidays
MUNICIPAL_HOLIDAYS = {
    "lisboa": (6, 13),   # Santo António
    "porto": (6, 24),    # São João
}

# Monthly productivity multipliers, index 0 = January
PT_SEASONAL = [
    0.85,  # Jan, rain/cold
    0.85,  # Feb
    0.95,  # Mar
    1.0,   # Apr
    1.0,   # May
    1.0,   # Jun
    1.0,   # Jul
    0.7,   # Aug, férias coletivas
    1.0,   # Sep
    1.0,   # Oct
    0.9,   # Nov, rain starts
    0.85,  # Dec, rain + holidays
]

# -----------------------------
# Options
# -----------------------------
DEFAULT_OPTIONS = {
    "max_workers": 10,
    "use_critical_chain": False,
    "safety_reduction": 0.5,
    "project_buffer_ratio": 0.5,
    "feeding_buffer_ratio": 0.5,
    "seasonal_factors": None,
    "labor_hourly_rate": None,
    "target_duration_days": 5,
    "max_team_size": 10,
    "floor_stagger_lag": FLOOR_STAGGER_LAG,
    "extra_holidays": [],
}

# Buffer fever-chart thresholds (consumed %)
GREEN_ZONE_MAX = 33
YELLOW_ZONE_MAX = 67


def municipal_holidays(municipality: str, years) -> list:
    """Concrete dates of a municipality's holiday for the given years."""
    month_day = MUNICIPAL_HOLIDAYS.get(municipality.lower())
    if month_day is None:
        return []
    return [date(y, *month_day) for y in years]
