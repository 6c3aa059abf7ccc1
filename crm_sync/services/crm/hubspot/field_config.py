"""HubSpot contact properties editable from meeting suggestions."""

from crm_sync.services.crm.field_config import FieldConfig, FieldDescriptor, PromptExample


class HubSpotFieldConfig(FieldConfig):
    provider = "hubspot"
    display_name = "HubSpot"
    prompt_example = PromptExample(
        field="company",
        value="Acme Corp",
        context="Sarah said she just joined Acme Corp",
    )

    def fields(self) -> list[FieldDescriptor]:
        return [
            FieldDescriptor("firstname", "First Name", category="basic"),
            FieldDescriptor("lastname", "Last Name", category="basic"),
            FieldDescriptor("email", "Email", category="basic"),
            FieldDescriptor("phone", "Phone", category="phone"),
            FieldDescriptor("mobilephone", "Mobile Phone", category="phone"),
            FieldDescriptor("company", "Company", category="work"),
            FieldDescriptor("jobtitle", "Job Title", category="work"),
            FieldDescriptor("address", "Address", category="address"),
            FieldDescriptor("city", "City", category="address"),
            FieldDescriptor("state", "State", category="address"),
            FieldDescriptor("zip", "ZIP Code", category="address"),
            FieldDescriptor("country", "Country", category="address"),
            FieldDescriptor("website", "Website", category="online"),
            FieldDescriptor("linkedin_url", "LinkedIn", api_name="hs_linkedin_url", category="online"),
            FieldDescriptor("twitter_handle", "Twitter", api_name="twitterhandle", category="online"),
        ]
