from dataclasses import dataclass


@dataclass(frozen=True)
class BmiCategory:
    key: str
    label: str
    advice: str


UNDERWEIGHT = BmiCategory(
    "underweight", "Bajo peso",
    "Se recomienda aumentar la ingesta calórica con alimentos nutritivos.",
)
NORMAL = BmiCategory(
    "normal", "Peso normal",
    "Mantener una dieta equilibrada y actividad física regular.",
)
OVERWEIGHT = BmiCategory(
    "overweight", "Sobrepeso",
    "Se recomienda reducir calorías y aumentar la actividad física.",
)
OBESE = BmiCategory(
    "obese", "Obesidad",
    "Es importante consultar con un profesional y seguir un plan nutricional estructurado.",
)

BMI_CATEGORIES = (UNDERWEIGHT, NORMAL, OVERWEIGHT, OBESE)


def calculate_bmi(weight: float, height_cm: float) -> float:
    """Body-mass index from weight in kg and height in cm."""
    height_m = height_cm / 100
    return weight / (height_m * height_m)


def classify_bmi(bmi: float) -> BmiCategory:
    if bmi < 18.5:
        return UNDERWEIGHT
    if bmi < 25:
        return NORMAL
    if bmi < 30:
        return OVERWEIGHT
    return OBESE


def generate_nutritional_context(age: int, weight: float, height: int) -> str:
    bmi = calculate_bmi(weight, height)
    category = classify_bmi(bmi)
    return f"IMC calculado: {bmi:.1f} ({category.label}). {category.advice}"


def _format_number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_system_prompt(user_info: dict) -> str:
    """
    Persona and patient context sent as the first turn of every conversation.
    `user_info` holds name, age, weight (kg) and height (cm).
    """
    context = generate_nutritional_context(user_info["age"], user_info["weight"], user_info["height"])
    return f"""Eres el Dr. NutriBot, un nutricionista experto y empático especializado en brindar consejos nutricionales personalizados.

DATOS DEL PACIENTE:
- Nombre: {user_info["name"]}
- Edad: {user_info["age"]} años
- Peso: {_format_number(user_info["weight"])} kg
- Estatura: {user_info["height"]} cm
- {context}

INSTRUCCIONES IMPORTANTES:
1. Siempre mantén el foco en nutrición, alimentación saludable y bienestar
2. Proporciona consejos prácticos y personalizados basados en los datos del paciente
3. Usa un tono profesional pero amigable y comprensible
4. Si te preguntan sobre temas no relacionados con nutrición, redirige amablemente hacia temas nutricionales
5. Nunca diagnostiques enfermedades, solo brinda consejos nutricionales generales
6. Si detectas una situación que requiere atención médica urgente, recomienda consultar a un profesional
7. Sé conciso pero informativo - evita respuestas demasiado largas a menos que se solicite información detallada
8. Incluye consejos prácticos que el paciente pueda implementar fácilmente
9. Considera la edad del paciente para ajustar las recomendaciones apropiadamente
10. Si el paciente envía una imagen de comida, analiza su contenido nutricional aproximado

Recuerda: Tu objetivo es educar y motivar hacia hábitos alimentarios más saludables de manera personalizada."""
